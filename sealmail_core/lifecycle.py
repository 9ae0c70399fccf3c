"""
sealmail_core.lifecycle
-----------------------
The Key Lifecycle Manager: the state machine around one account's key
material.

    ABSENT --generate--> ACTIVE --revoke--> REVOKED --generate--> ACTIVE'
                         ACTIVE --regenerate--> ACTIVE'

Key generation runs on a background pool and is handed back as a
cancellable ``GenerationTask``. A task cancelled or timed out before it takes
the account lock never commits; one already holding the lock finishes its
commit, so the caller may see a timeout for a key that was stored.
Generation faults are reported, never retried automatically.
"""

from __future__ import annotations
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Callable, Optional, Tuple, Union
import threading

from cryptography.hazmat.primitives.asymmetric import x25519

from .constants import DEFAULT_KEYGEN_TIMEOUT, DEFAULT_KEYGEN_WORKERS
from .crypto import compute_pubkey_fingerprint, fingerprint_of_private, generate_keypair, key_id
from .directory import PublicKey, narrow_public_key
from .errors import KeyGenerationError, NoActiveKey, VaultUnlockError, VaultWriteError
from .logger import get_logger
from .storage.models import KeyRecord
from .vault import KeyVault

log = get_logger("sealmail.lifecycle")

KeyGen = Callable[[], Tuple[x25519.X25519PrivateKey, str]]


class KeyState(str, Enum):
    ABSENT = "ABSENT"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


@dataclass(frozen=True)
class Identity:
    """Self-description bound to a key. Never used for authorization."""
    name: str
    email: str = ""

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>" if self.email else self.name


class HealthStatus(str, Enum):
    OK = "OK"
    NO_KEYS = "NO_KEYS"
    INCONSISTENT = "INCONSISTENT"
    KEY_MISMATCH = "KEY_MISMATCH"
    UNLOCK_FAILED = "UNLOCK_FAILED"


_HEALTH_CODES = {
    HealthStatus.OK: "OK",
    HealthStatus.NO_KEYS: "E_EMAIL_NO_KEYS",
    HealthStatus.INCONSISTENT: "E_EMAIL_KEY_INCONSISTENT",
    HealthStatus.KEY_MISMATCH: "E_EMAIL_KEY_MISMATCH",
    HealthStatus.UNLOCK_FAILED: "E_EMAIL_KEY_VERIFY_FAILED",
}


@dataclass(frozen=True)
class KeyHealth:
    account_id: str
    has_public_key: bool
    has_private_key: bool
    keys_match: bool
    fingerprint: Optional[str]
    status: HealthStatus
    message: str
    public_key_id: Optional[str] = None
    private_key_id: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.status is HealthStatus.OK

    @property
    def code(self) -> str:
        return _HEALTH_CODES[self.status]

    def to_dict(self) -> dict:
        d = asdict(self)
        d.update(status=self.status.value, code=self.code, valid=self.valid)
        return d


class GenerationTask:
    """Handle on a background key generation."""

    def __init__(self, account_id: str, future: Future, cancelled: threading.Event, timeout: Optional[float]):
        self.account_id = account_id
        self._future = future
        self._cancelled = cancelled
        self._timeout = timeout

    def cancel(self) -> None:
        # a job already past its commit point still completes
        self._cancelled.set()
        self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> KeyRecord:
        wait = self._timeout if timeout is None else timeout
        try:
            return self._future.result(timeout=wait)
        except FutureTimeout as e:
            self.cancel()
            raise KeyGenerationError(
                f"key generation for {self.account_id} timed out after {wait}s", account_id=self.account_id
            ) from e
        except CancelledError as e:
            raise KeyGenerationError(
                f"key generation for {self.account_id} was cancelled", account_id=self.account_id
            ) from e


class KeyLifecycleManager:
    def __init__(self, vault: KeyVault, workers: int = DEFAULT_KEYGEN_WORKERS,
                 keygen_timeout: Optional[float] = DEFAULT_KEYGEN_TIMEOUT, keygen: KeyGen = generate_keypair):
        self.vault = vault
        self.keygen_timeout = keygen_timeout
        self._keygen = keygen
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sealmail-keygen")

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def state(self, account_id: str) -> KeyState:
        rec = self.vault.latest_record(account_id)
        if rec is None:
            return KeyState.ABSENT
        return KeyState.ACTIVE if rec.is_active else KeyState.REVOKED

    def active_public_key(self, account_id: str) -> Optional[PublicKey]:
        return narrow_public_key(account_id, self.vault.active_record(account_id))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def generate_async(self, account_id: str, identity: Union[Identity, str] = "",
                       replace: bool = False) -> GenerationTask:
        if not replace and self.state(account_id) is KeyState.ACTIVE:
            raise VaultWriteError(
                f"account {account_id} already has an active key; revoke or regenerate instead",
                account_id=account_id,
            )
        cancelled = threading.Event()
        future = self._pool.submit(self._generate_job, account_id, str(identity), cancelled, replace)
        return GenerationTask(account_id, future, cancelled, self.keygen_timeout)

    def generate(self, account_id: str, identity: Union[Identity, str] = "",
                 timeout: Optional[float] = None) -> KeyRecord:
        """Create the account's first (or post-revocation) keypair."""
        return self.generate_async(account_id, identity).result(timeout)

    def regenerate(self, account_id: str, identity: Union[Identity, str] = "",
                   timeout: Optional[float] = None) -> KeyRecord:
        """Revoke (if active) and generate, committed as one unit under the account lock."""
        return self.generate_async(account_id, identity, replace=True).result(timeout)

    def revoke(self, account_id: str) -> bool:
        if self.state(account_id) is not KeyState.ACTIVE:
            log.debug(f"[LIFECYCLE] revoke {account_id}: not active, nothing to do")
            return False
        return self.vault.revoke(account_id)

    def _generate_job(self, account_id: str, identity: str, cancelled: threading.Event, replace: bool) -> KeyRecord:
        if cancelled.is_set():
            raise KeyGenerationError(f"key generation for {account_id} was cancelled", account_id=account_id)

        # CPU-bound part, outside the account lock
        try:
            private_key, public_key = self._keygen()
            matches = fingerprint_of_private(private_key) == compute_pubkey_fingerprint(public_key)
        except Exception as e:
            log.error(f"[LIFECYCLE] key generation backend failed for {account_id}: {type(e).__name__}")
            raise KeyGenerationError(f"key generation failed for {account_id}", account_id=account_id) from e
        if not matches:
            raise KeyGenerationError(f"generated keypair for {account_id} does not match", account_id=account_id)

        with self.vault.account_lock(account_id):
            if cancelled.is_set():
                raise KeyGenerationError(f"key generation for {account_id} was cancelled", account_id=account_id)
            # revoke and store commit together or not at all
            with self.vault.storage.transaction():
                if replace:
                    self.vault.revoke(account_id)
                rec = self.vault.store(account_id, public_key, private_key, identity=identity)

        log.info(f"[LIFECYCLE] {'regenerated' if replace else 'generated'} key {key_id(rec.fingerprint)} for {account_id}")
        return rec

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------
    def verify(self, account_id: str) -> KeyHealth:
        """Report key health without exposing key material."""
        with self.vault.account_lock(account_id):
            rec = self.vault.active_record(account_id)
            if rec is None:
                return KeyHealth(account_id, False, False, False, None, HealthStatus.NO_KEYS,
                                 "No keys found for this account")

            has_pub, has_priv = bool(rec.public_key), bool(rec.encrypted_private_key)
            if has_pub != has_priv:
                missing = "private" if has_pub else "public"
                return KeyHealth(account_id, has_pub, has_priv, False, rec.fingerprint, HealthStatus.INCONSISTENT,
                                 f"Inconsistent key record: the {missing} half is missing")

            try:
                private_key = self.vault.unlock_private_key(account_id)
            except NoActiveKey:
                return KeyHealth(account_id, False, False, False, None, HealthStatus.NO_KEYS,
                                 "No keys found for this account")
            except VaultUnlockError as e:
                return KeyHealth(account_id, True, True, False, rec.fingerprint, HealthStatus.UNLOCK_FAILED, str(e))

            private_fpr = fingerprint_of_private(private_key)
            del private_key
            try:
                public_fpr = compute_pubkey_fingerprint(rec.public_key)
            except ValueError:
                return KeyHealth(account_id, True, True, False, rec.fingerprint, HealthStatus.KEY_MISMATCH,
                                 "Stored public key is unreadable", private_key_id=key_id(private_fpr))

        keys_match = public_fpr == private_fpr == rec.fingerprint
        return KeyHealth(
            account_id=account_id,
            has_public_key=True,
            has_private_key=True,
            keys_match=keys_match,
            fingerprint=rec.fingerprint,
            status=HealthStatus.OK if keys_match else HealthStatus.KEY_MISMATCH,
            message="Keys are valid and match" if keys_match else "Key pair mismatch!",
            public_key_id=key_id(public_fpr),
            private_key_id=key_id(private_fpr),
        )
