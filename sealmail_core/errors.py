"""
sealmail_core.errors
--------------------
Error taxonomy for the messaging core.

Every error carries a stable ``code`` so callers can pick the remedy
(re-enroll keys, contact the sender, escalate to an operator) without
parsing messages. Messages never contain key material or the master
passphrase.
"""

from __future__ import annotations
from typing import Optional


class SealmailError(Exception):
    code = "E_EMAIL_FAILED"

    def __init__(self, message: str = "", account_id: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.account_id = account_id

    def to_dict(self) -> dict:
        return {"error": self.__class__.__name__, "code": self.code,
                "message": str(self), "account_id": self.account_id}


class MasterKeyMissing(SealmailError):
    """The vault master passphrase is not configured."""
    code = "E_EMAIL_MASTER_KEY_MISSING"


class VaultWriteError(SealmailError):
    """Duplicate or inconsistent key write attempted."""
    code = "E_EMAIL_VAULT_WRITE"


class VaultUnlockError(SealmailError):
    """Stored private key cannot be decrypted. Fatal for the account until an operator intervenes."""
    code = "E_EMAIL_KEY_VERIFY_FAILED"


class NoActiveKey(SealmailError):
    code = "E_EMAIL_NO_KEYS"


class KeyGenerationError(SealmailError):
    """Backend or entropy fault while generating a keypair. Retryable by the user."""
    code = "E_EMAIL_KEYGEN_FAILED"


class EncryptionBackendError(SealmailError):
    code = "E_EMAIL_ENCRYPT_FAILED"


class DecryptionError(SealmailError):
    code = "E_EMAIL_DECRYPT_FAILED"


class ViewerHasNoKey(DecryptionError):
    code = "E_EMAIL_NO_PRIVATE_KEY"


class KeyMismatchOrCorrupt(DecryptionError):
    code = "E_EMAIL_DECRYPT_FAILED"


class InvalidEnvelopeFormat(KeyMismatchOrCorrupt):
    code = "E_EMAIL_INVALID_ENCRYPTED_FORMAT"
