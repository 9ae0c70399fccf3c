"""
sealmail_core.vault
-------------------
The Key Vault: sole holder of the master passphrase, the only component
that writes KeyRecords and the only one that turns an encrypted private
key back into usable key material.

Writes are append or soft-delete only. A generation's public and private
halves are written in one transaction, so a record never exists with one
half and not the other.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, List, Optional

from cryptography.hazmat.primitives.asymmetric import x25519

from .crypto import (
    compute_pubkey_fingerprint, fingerprint_of_private, encrypt_private_key,
    decrypt_private_key, key_id,
)
from .errors import MasterKeyMissing, NoActiveKey, VaultUnlockError, VaultWriteError
from .locks import KeyedLocks
from .logger import get_logger
from .storage import DuplicateActiveKey, KeyRecord, StorageProvider
from .utils import now_ts

log = get_logger("sealmail.vault")


class KeyVault:
    def __init__(self, storage: StorageProvider, master_passphrase: str, locks: Optional[KeyedLocks] = None):
        if not master_passphrase:
            raise MasterKeyMissing("vault master passphrase is not configured")
        self.storage = storage
        self._passphrase = master_passphrase.encode("utf-8")
        self.locks = locks or KeyedLocks()

    def __repr__(self) -> str:
        return f"<KeyVault storage={type(self.storage).__name__} passphrase=***>"

    @contextmanager
    def account_lock(self, account_id: str) -> Iterator[None]:
        with self.locks.hold(account_id):
            yield

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def store(self, account_id: str, public_key: str, raw_private_key: x25519.X25519PrivateKey,
              identity: str = "") -> KeyRecord:
        """
        Encrypt ``raw_private_key`` under the master passphrase and write it
        together with ``public_key`` as the account's new active generation.

        Raises VaultWriteError if the account already has an active key, if
        the two halves do not belong together, or if the write fails midway
        (in which case nothing is kept).
        """
        try:
            fingerprint = compute_pubkey_fingerprint(public_key)
        except ValueError as e:
            raise VaultWriteError(f"public key for {account_id} is unreadable", account_id=account_id) from e
        if fingerprint_of_private(raw_private_key) != fingerprint:
            raise VaultWriteError(
                f"public and private halves for {account_id} belong to different keypairs",
                account_id=account_id,
            )
        blob = encrypt_private_key(raw_private_key, self._passphrase)

        with self.account_lock(account_id):
            if self.storage.get_active_key(account_id) is not None:
                raise VaultWriteError(
                    f"account {account_id} already has an active key; revoke it first",
                    account_id=account_id,
                )
            created_at = now_ts()
            try:
                with self.storage.transaction():
                    new_id = self.storage.insert_public_key(account_id, public_key, fingerprint, created_at, identity)
                    self.storage.set_encrypted_private_key(new_id, blob)
                    self.storage.log_event("key.stored", {"account_id": account_id, "fingerprint": fingerprint})
            except DuplicateActiveKey as e:
                raise VaultWriteError(
                    f"account {account_id} already has an active key; revoke it first",
                    account_id=account_id,
                ) from e
            except Exception as e:
                log.error(f"[VAULT] key write for {account_id} rolled back ({type(e).__name__})")
                raise VaultWriteError(
                    f"key write for {account_id} failed and was rolled back", account_id=account_id
                ) from e

        log.info(f"[VAULT] stored key {key_id(fingerprint)} for {account_id}")
        return KeyRecord(
            key_id=new_id,
            account_id=account_id,
            public_key=public_key,
            fingerprint=fingerprint,
            created_at=created_at,
            encrypted_private_key=blob,
            identity=identity,
        )

    def revoke(self, account_id: str) -> bool:
        """Soft-delete the active generation. Returns False when there was nothing to revoke."""
        with self.account_lock(account_id):
            active = self.storage.get_active_key(account_id)
            if active is None:
                log.debug(f"[VAULT] revoke {account_id}: no active key")
                return False
            with self.storage.transaction():
                changed = self.storage.revoke_key(account_id, now_ts())
                if changed:
                    self.storage.log_event("key.revoked", {"account_id": account_id, "fingerprint": active.fingerprint})
        log.info(f"[VAULT] revoked key {key_id(active.fingerprint)} for {account_id}")
        return changed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def active_record(self, account_id: str) -> Optional[KeyRecord]:
        return self.storage.get_active_key(account_id)

    def latest_record(self, account_id: str) -> Optional[KeyRecord]:
        return self.storage.get_latest_key(account_id)

    def history(self, account_id: str) -> List[KeyRecord]:
        return self.storage.list_keys(account_id)

    def unlock_private_key(self, account_id: str) -> x25519.X25519PrivateKey:
        """
        Decrypt the active generation's private key.

        The returned key must not outlive the caller's operation.
        """
        rec = self.storage.get_active_key(account_id)
        if rec is None:
            raise NoActiveKey(f"account {account_id} has no active key", account_id=account_id)
        if not rec.encrypted_private_key:
            log.error(f"[VAULT] active key for {account_id} has no private half")
            raise VaultUnlockError(f"active key for {account_id} has no private half", account_id=account_id)
        try:
            return decrypt_private_key(rec.encrypted_private_key, self._passphrase)
        except ValueError as e:
            log.error(f"[VAULT] cannot unlock key {key_id(rec.fingerprint)} for {account_id}")
            raise VaultUnlockError(
                f"stored private key for {account_id} cannot be unlocked; operator intervention required",
                account_id=account_id,
            ) from e
