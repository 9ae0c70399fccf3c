"""
sealmail_core
-------------
End-to-end encryption core for a messaging system: a passphrase-protected
key vault, per-account key lifecycle, multi-recipient envelope building
with an explicit plaintext fallback, and a decryption gate for viewers.
"""

from .builder import EnvelopeBuilder
from .config import Settings
from .core import SealmailCore, create_core
from .diagnostics import Diagnostics
from .directory import HTTPDirectory, PublicKey, PublicKeyDirectory, VaultDirectory, narrow_public_key
from .envelope import EncryptionEnvelope, EncryptionOutcome, EnvelopeMode, OutcomeKind, PlaintextResult
from .errors import (
    SealmailError, MasterKeyMissing, VaultWriteError, VaultUnlockError, NoActiveKey,
    KeyGenerationError, EncryptionBackendError, DecryptionError, ViewerHasNoKey,
    KeyMismatchOrCorrupt, InvalidEnvelopeFormat,
)
from .gate import DecryptionGate
from .lifecycle import GenerationTask, HealthStatus, Identity, KeyHealth, KeyLifecycleManager, KeyState
from .vault import KeyVault

__all__ = [
    "EnvelopeBuilder", "Settings", "SealmailCore", "create_core", "Diagnostics",
    "HTTPDirectory", "PublicKey", "PublicKeyDirectory", "VaultDirectory", "narrow_public_key",
    "EncryptionEnvelope", "EncryptionOutcome", "EnvelopeMode", "OutcomeKind", "PlaintextResult",
    "SealmailError", "MasterKeyMissing", "VaultWriteError", "VaultUnlockError", "NoActiveKey",
    "KeyGenerationError", "EncryptionBackendError", "DecryptionError", "ViewerHasNoKey",
    "KeyMismatchOrCorrupt", "InvalidEnvelopeFormat",
    "DecryptionGate", "GenerationTask", "HealthStatus", "Identity", "KeyHealth",
    "KeyLifecycleManager", "KeyState", "KeyVault",
]
