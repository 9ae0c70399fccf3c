from __future__ import annotations
from contextlib import contextmanager
from typing import Optional, Dict, Any, List, Iterator
import json, sqlite3, os, threading
from sealmail_core.storage.provider import StorageProvider, DuplicateActiveKey
from sealmail_core.storage.models import KeyRecord
from sealmail_core.utils import now_ts

_KEY_COLUMNS = "key_id,account_id,public_key,fingerprint,created_at,encrypted_private_key,revoked_at,identity"


class SQLiteStorage(StorageProvider):
    def __init__(self, path="db/sealmail.db"):
        # If no directory, default to current working directory
        dir_path = os.path.dirname(path) or "."
        os.makedirs(dir_path, exist_ok=True)
        self.db = sqlite3.connect(path, check_same_thread=False)
        # one connection shared by all request threads
        self._lock = threading.RLock()
        self._tx_depth = 0

        self._init()

    def _init(self) -> None:
        with self._lock:
            c = self.db.cursor()
            c.execute("""CREATE TABLE IF NOT EXISTS keyring(
                key_id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL,
                public_key TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                created_at TEXT NOT NULL,
                encrypted_private_key TEXT,
                revoked_at TEXT,
                identity TEXT NOT NULL DEFAULT ''
            )""")
            # at most one live generation per account
            c.execute("""CREATE UNIQUE INDEX IF NOT EXISTS keyring_one_active
                ON keyring(account_id) WHERE revoked_at IS NULL""")
            c.execute("CREATE INDEX IF NOT EXISTS keyring_fpr ON keyring(fingerprint)")
            c.execute("""CREATE TABLE IF NOT EXISTS audit(
                ts TEXT,
                event_type TEXT,
                payload TEXT
            )""")
            self.db.commit()

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self.db.commit()

    @contextmanager
    def transaction(self) -> Iterator["SQLiteStorage"]:
        """All writes inside the block commit together or not at all."""
        with self._lock:
            outer = self._tx_depth == 0
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if outer:
                    self.db.rollback()
                raise
            else:
                self._tx_depth -= 1
                if outer:
                    self.db.commit()

    def insert_public_key(self, account_id: str, public_key: str, fingerprint: str,
                          created_at: str, identity: str = "") -> int:
        with self._lock:
            try:
                cur = self.db.execute(
                    "INSERT INTO keyring(account_id,public_key,fingerprint,created_at,identity) VALUES(?,?,?,?,?)",
                    (account_id, public_key, fingerprint, created_at, identity),
                )
            except sqlite3.IntegrityError as e:
                if self._tx_depth == 0:
                    self.db.rollback()
                raise DuplicateActiveKey(account_id) from e
            self._commit()
            return cur.lastrowid

    def set_encrypted_private_key(self, key_id: int, blob: str) -> None:
        with self._lock:
            self.db.execute("UPDATE keyring SET encrypted_private_key=? WHERE key_id=?", (blob, key_id))
            self._commit()

    def _one(self, sql: str, params: tuple) -> Optional[KeyRecord]:
        with self._lock:
            row = self.db.execute(sql, params).fetchone()
        return KeyRecord(*row) if row else None

    def get_active_key(self, account_id: str) -> Optional[KeyRecord]:
        return self._one(
            f"SELECT {_KEY_COLUMNS} FROM keyring WHERE account_id=? AND revoked_at IS NULL", (account_id,)
        )

    def get_latest_key(self, account_id: str) -> Optional[KeyRecord]:
        return self._one(
            f"SELECT {_KEY_COLUMNS} FROM keyring WHERE account_id=? ORDER BY key_id DESC LIMIT 1", (account_id,)
        )

    def revoke_key(self, account_id: str, revoked_at: str) -> bool:
        with self._lock:
            cur = self.db.execute(
                "UPDATE keyring SET revoked_at=? WHERE account_id=? AND revoked_at IS NULL",
                (revoked_at, account_id),
            )
            self._commit()
            return cur.rowcount > 0

    def fetch_by_fingerprint(self, fpr: str) -> Optional[KeyRecord]:
        return self._one(
            f"SELECT {_KEY_COLUMNS} FROM keyring WHERE fingerprint=? ORDER BY key_id DESC LIMIT 1", (fpr,)
        )

    def list_keys(self, account_id: Optional[str] = None) -> List[KeyRecord]:
        with self._lock:
            if account_id is None:
                cur = self.db.execute(f"SELECT {_KEY_COLUMNS} FROM keyring ORDER BY key_id")
            else:
                cur = self.db.execute(
                    f"SELECT {_KEY_COLUMNS} FROM keyring WHERE account_id=? ORDER BY key_id", (account_id,)
                )
            return [KeyRecord(*r) for r in cur.fetchall()]

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.db.execute("INSERT INTO audit(ts,event_type,payload) VALUES(?,?,?)",
                            (now_ts(), event_type, json.dumps(payload, separators=(",", ":"), sort_keys=True)))
            self._commit()

    def list_events(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.db.execute("SELECT ts,event_type,payload FROM audit ORDER BY rowid").fetchall()
        return [{"ts": ts, "event_type": et, "payload": json.loads(p)} for ts, et, p in rows]

    def close(self):
        with self._lock:
            self.db.close()
