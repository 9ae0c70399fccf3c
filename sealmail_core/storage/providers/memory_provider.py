from contextlib import contextmanager
from dataclasses import replace
from typing import Optional, Dict, Any, List
import threading
from sealmail_core.storage.models import KeyRecord
from sealmail_core.storage.provider import StorageProvider, DuplicateActiveKey
from sealmail_core.utils import now_ts


class InMemoryStorage(StorageProvider):
    def __init__(self):
        self.keys: List[KeyRecord] = []
        self.audit: List[Dict[str, Any]] = []
        self._next_id = 1
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self):
        with self._lock:
            keys = [replace(rec) for rec in self.keys]
            audit = list(self.audit)
            next_id = self._next_id
            try:
                yield self
            except BaseException:
                self.keys, self.audit, self._next_id = keys, audit, next_id
                raise

    # keyring
    def insert_public_key(self, account_id, public_key, fingerprint, created_at, identity=""):
        with self._lock:
            if self.get_active_key(account_id) is not None:
                raise DuplicateActiveKey(account_id)
            rec = KeyRecord(key_id=self._next_id, account_id=account_id, public_key=public_key,
                            fingerprint=fingerprint, created_at=created_at, identity=identity)
            self._next_id += 1
            self.keys.append(rec)
            return rec.key_id

    def set_encrypted_private_key(self, key_id, blob):
        with self._lock:
            for rec in self.keys:
                if rec.key_id == key_id:
                    rec.encrypted_private_key = blob

    def get_active_key(self, account_id):
        with self._lock:
            rec = next((r for r in self.keys if r.account_id == account_id and r.is_active), None)
            return replace(rec) if rec else None

    def get_latest_key(self, account_id):
        with self._lock:
            recs = [r for r in self.keys if r.account_id == account_id]
            return replace(recs[-1]) if recs else None

    def revoke_key(self, account_id, revoked_at):
        with self._lock:
            changed = False
            for rec in self.keys:
                if rec.account_id == account_id and rec.is_active:
                    rec.revoked_at = revoked_at
                    changed = True
            return changed

    def fetch_by_fingerprint(self, fpr):
        with self._lock:
            recs = [r for r in self.keys if r.fingerprint == fpr]
            return replace(recs[-1]) if recs else None

    def list_keys(self, account_id=None):
        with self._lock:
            return [replace(r) for r in self.keys if account_id is None or r.account_id == account_id]

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]):
        with self._lock:
            self.audit.append({"ts": now_ts(), "event_type": event_type, "payload": dict(payload)})

    def list_events(self):
        with self._lock:
            return list(self.audit)

    def close(self):
        pass
