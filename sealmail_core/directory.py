"""
sealmail_core.directory
-----------------------
Public key lookup for recipients.

Directories may hand back loosely typed records (a PEM string, a storage
row, a JSON mapping from an HTTP service). ``narrow_public_key`` is the one
place those shapes become a strict ``PublicKey`` or ``None``.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional
import requests

from cryptography.hazmat.primitives.asymmetric import x25519

from .crypto import compute_pubkey_fingerprint, key_id, load_public_key
from .logger import get_logger
from .storage.models import KeyRecord

log = get_logger("sealmail.directory")

_MAPPING_KEYS = ("public_key", "publicKey", "pgpPublicKey", "armored")


@dataclass(frozen=True)
class PublicKey:
    account_id: str
    armored: str
    fingerprint: str

    @property
    def key_id(self) -> str:
        return key_id(self.fingerprint)

    def load(self) -> x25519.X25519PublicKey:
        return load_public_key(self.armored)


def narrow_public_key(account_id: str, raw: Any) -> Optional[PublicKey]:
    """Convert whatever a directory returned into a PublicKey, or None."""
    if raw is None:
        return None
    if isinstance(raw, PublicKey):
        armored = raw.armored
    elif isinstance(raw, KeyRecord):
        if not raw.is_active or not raw.encrypted_private_key:
            return None
        armored = raw.public_key
    elif isinstance(raw, str):
        armored = raw
    elif isinstance(raw, Mapping):
        armored = next((raw[k] for k in _MAPPING_KEYS if isinstance(raw.get(k), str)), None)
    else:
        armored = None

    if not armored or not armored.strip():
        return None
    try:
        # fingerprint is always recomputed, never taken from the directory
        fingerprint = compute_pubkey_fingerprint(armored)
    except ValueError:
        log.warning(f"[DIRECTORY] unusable public key for {account_id}")
        return None
    return PublicKey(account_id=account_id, armored=armored.strip() + "\n", fingerprint=fingerprint)


class PublicKeyDirectory:
    # Interface: side-effect free, safe to call once per recipient per send
    def resolve_public_key(self, account_id: str) -> Any: ...


class VaultDirectory(PublicKeyDirectory):
    """In-process directory answering from the vault's active generations."""

    def __init__(self, vault):
        self.vault = vault

    def resolve_public_key(self, account_id: str) -> Optional[KeyRecord]:
        return self.vault.active_record(account_id)


class HTTPDirectory(PublicKeyDirectory):
    """
    Directory backed by an HTTP service.

    GET {base_url}/accounts/{account_id}/public-key
      - 200 with a JSON body carrying the armored key
      - 404 when the account has no key
    Any other status raises, which the envelope builder counts as missing.
    """

    def __init__(self, base_url: str, timeout: float = 2.0, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token = token

    def resolve_public_key(self, account_id: str) -> Optional[dict]:
        url = f"{self.base_url}/accounts/{requests.utils.quote(account_id, safe='')}/public-key"
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        log.debug(f"[HTTP DIR] → {url}")
        res = requests.get(url, headers=headers, timeout=self.timeout)
        if res.status_code == 404:
            return None
        res.raise_for_status()
        return res.json()
