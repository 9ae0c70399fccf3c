# sealmail_core/storage/models.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass
class KeyRecord:
    """
    Storage-level representation of one key generation for an account.

    Rows are never mutated in place except to set ``revoked_at``; a revoked
    row stays for audit but is functionally absent. The encrypted private
    half is only ever read by the vault.
    """
    key_id: int
    account_id: str
    public_key: str
    fingerprint: str
    created_at: str
    encrypted_private_key: Optional[str] = None
    revoked_at: Optional[str] = None
    identity: str = ""

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def describe(self) -> dict:
        """Audit view: never includes the private half."""
        return {
            "key_id": self.key_id,
            "account_id": self.account_id,
            "fingerprint": self.fingerprint,
            "identity": self.identity,
            "created_at": self.created_at,
            "revoked_at": self.revoked_at,
            "has_private_key": bool(self.encrypted_private_key),
        }
