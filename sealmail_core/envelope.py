"""
sealmail_core.envelope
----------------------
The EncryptionEnvelope attached to a message, the outcome reported by the
builder, and the plaintext result returned by the decryption gate.

An envelope is immutable once built: its mode never changes, even if the
keys it was sealed against are later revoked.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import json

from .constants import (
    SCHEMA_VERSION, ENCRYPTED_SUBJECT_PLACEHOLDER, ENCRYPTED_BODY_PLACEHOLDER, PREVIEW_LEN,
)
from .utils import now_ts


class EnvelopeMode(str, Enum):
    PLAINTEXT = "PLAINTEXT"
    ENCRYPTED = "ENCRYPTED"


@dataclass(frozen=True)
class EncryptionEnvelope:
    mode: EnvelopeMode
    subject: str                # plaintext, or armored ciphertext when ENCRYPTED
    body: str
    target_fingerprints: Tuple[str, ...] = ()
    schema_ver: str = SCHEMA_VERSION
    created_at: str = field(default_factory=now_ts)

    def __post_init__(self):
        object.__setattr__(self, "mode", EnvelopeMode(self.mode))
        object.__setattr__(self, "target_fingerprints", tuple(self.target_fingerprints))
        if self.mode is EnvelopeMode.ENCRYPTED and not self.target_fingerprints:
            raise ValueError("an encrypted envelope must name the fingerprints it was sealed against")

    @property
    def is_encrypted(self) -> bool:
        return self.mode is EnvelopeMode.ENCRYPTED

    @classmethod
    def plaintext(cls, subject: str, body: str) -> "EncryptionEnvelope":
        return cls(mode=EnvelopeMode.PLAINTEXT, subject=subject, body=body)

    def preview(self) -> Tuple[str, str]:
        """(subject, body preview) for list views, without touching ciphertext."""
        if self.is_encrypted:
            return ENCRYPTED_SUBJECT_PLACEHOLDER, ENCRYPTED_BODY_PLACEHOLDER
        body = " ".join(self.body.split())
        if len(body) > PREVIEW_LEN:
            body = body[:PREVIEW_LEN].rstrip() + "…"
        return self.subject, body

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["mode"] = self.mode.value
        d["target_fingerprints"] = list(self.target_fingerprints)
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptionEnvelope":
        """Rebuild an envelope from the caller's persisted form (inverse of to_dict)."""
        return cls(
            mode=EnvelopeMode(data["mode"]),
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            target_fingerprints=tuple(data.get("target_fingerprints") or ()),
            schema_ver=data.get("schema_ver", SCHEMA_VERSION),
            created_at=data.get("created_at") or now_ts(),
        )

    @classmethod
    def from_json(cls, text: str) -> "EncryptionEnvelope":
        return cls.from_dict(json.loads(text))


class OutcomeKind(str, Enum):
    ENCRYPTED = "Encrypted"
    SENDER_KEY_MISSING = "SenderKeyMissing"
    RECIPIENT_KEY_MISSING = "RecipientKeyMissing"
    ENCRYPTION_BACKEND_ERROR = "EncryptionBackendError"


@dataclass(frozen=True)
class EncryptionOutcome:
    kind: OutcomeKind
    account_id: Optional[str] = None    # the sender, or the first recipient lacking a key
    missing: Tuple[str, ...] = ()       # every recipient lacking a key
    detail: str = ""

    @classmethod
    def encrypted(cls) -> "EncryptionOutcome":
        return cls(OutcomeKind.ENCRYPTED)

    @classmethod
    def sender_key_missing(cls, sender_account_id: str) -> "EncryptionOutcome":
        return cls(OutcomeKind.SENDER_KEY_MISSING, account_id=sender_account_id)

    @classmethod
    def recipient_key_missing(cls, missing: Tuple[str, ...]) -> "EncryptionOutcome":
        return cls(OutcomeKind.RECIPIENT_KEY_MISSING, account_id=missing[0], missing=tuple(missing))

    @classmethod
    def backend_error(cls, detail: str) -> "EncryptionOutcome":
        return cls(OutcomeKind.ENCRYPTION_BACKEND_ERROR, detail=detail)

    @property
    def degraded(self) -> bool:
        return self.kind is not OutcomeKind.ENCRYPTED

    @property
    def warning(self) -> Optional[str]:
        """User-facing reason a message went out unencrypted; None when it was encrypted."""
        if self.kind is OutcomeKind.SENDER_KEY_MISSING:
            return "Sent without encryption: you have no active encryption key."
        if self.kind is OutcomeKind.RECIPIENT_KEY_MISSING:
            who = ", ".join(self.missing)
            noun = "recipient has" if len(self.missing) == 1 else "recipients have"
            return f"Sent without encryption: {noun} no encryption key ({who})."
        if self.kind is OutcomeKind.ENCRYPTION_BACKEND_ERROR:
            return "Sent without encryption: the encryption backend failed."
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "account_id": self.account_id,
            "missing": list(self.missing),
            "detail": self.detail,
            "warning": self.warning,
        }


@dataclass(frozen=True)
class PlaintextResult:
    subject: str
    body: str
    was_encrypted: bool
