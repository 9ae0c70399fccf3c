"""
sealmail_core.crypto
--------------------
Stateless primitives for the messaging core:

- X25519 keypairs, PEM armor for public keys, passphrase-encrypted PKCS#8
  for private keys at rest
- Fingerprints (SHA-256 over the raw public key) and short key ids
- Multi-recipient sealing: one AES-256-GCM ciphertext per text, the content
  key wrapped once per target key via ephemeral X25519 + HKDF + AES-KW
- Armor: sealed containers are printable text, safe for text columns
"""

from __future__ import annotations
from typing import Tuple, Optional, Dict, Any, Iterable, List
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.keywrap import aes_key_wrap, aes_key_unwrap, InvalidUnwrap
from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
import binascii, json, os

from .constants import (
    SCHEMA_VERSION, SEAL_ALGORITHM, HKDF_INFO, CONTENT_KEY_LEN, NONCE_LEN,
    ARMOR_HEADER, ARMOR_FOOTER, ARMOR_WIDTH, FINGERPRINT_LEN, KEY_ID_LEN,
)
from .errors import EncryptionBackendError, KeyMismatchOrCorrupt, InvalidEnvelopeFormat
from .utils import b64e, b64d, canonical_json, sha256, wrap_lines

Recipient = Tuple[str, x25519.X25519PublicKey]   # (fingerprint, public key)

_CONTAINER_TEXT_FIELDS = ("field", "nonce", "ct")
_STANZA_FIELDS = ("fpr", "epk", "wk")


# --------- Keypairs ----------
def generate_keypair() -> Tuple[x25519.X25519PrivateKey, str]:
    sk = x25519.X25519PrivateKey.generate()
    return sk, public_pem(sk.public_key())


def public_pem(pk: x25519.X25519PublicKey) -> str:
    return pk.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def load_public_key(pem: str) -> x25519.X25519PublicKey:
    """Parse an armored public key. Raises ValueError for anything but an X25519 key."""
    try:
        pk = serialization.load_pem_public_key(pem.strip().encode("ascii"))
    except (UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise ValueError(f"unreadable public key: {e}") from e
    if not isinstance(pk, x25519.X25519PublicKey):
        raise ValueError(f"unsupported public key type: {type(pk).__name__}")
    return pk


def _raw_public(pk: x25519.X25519PublicKey) -> bytes:
    return pk.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)


# --------- Private key at rest ----------
def encrypt_private_key(sk: x25519.X25519PrivateKey, passphrase: bytes) -> str:
    return sk.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase),
    ).decode("ascii")


def decrypt_private_key(blob: str, passphrase: bytes) -> x25519.X25519PrivateKey:
    """
    Load a passphrase-protected private key.

    Raises ValueError when the passphrase is wrong, the blob is damaged,
    or the key is not an X25519 key.
    """
    try:
        sk = serialization.load_pem_private_key(blob.encode("ascii"), password=passphrase)
    except (TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise ValueError(f"private key blob cannot be loaded: {type(e).__name__}") from e
    if not isinstance(sk, x25519.X25519PrivateKey):
        raise ValueError(f"unsupported private key type: {type(sk).__name__}")
    return sk


# --------- Fingerprints ----------
def compute_pubkey_fingerprint(pubkey_pem: str) -> str:
    """
    Compute a stable fingerprint for an X25519 public key.

    - Input: PEM armored public key
    - Output: hex-encoded SHA256 of the raw key, truncated to 32 chars

    The fingerprint names a key generation; envelopes record the
    fingerprints they were sealed against.
    """
    return sha256(_raw_public(load_public_key(pubkey_pem)))[:FINGERPRINT_LEN]


def fingerprint_of(pk: x25519.X25519PublicKey) -> str:
    return sha256(_raw_public(pk))[:FINGERPRINT_LEN]


def fingerprint_of_private(sk: x25519.X25519PrivateKey) -> str:
    return fingerprint_of(sk.public_key())


def key_id(fingerprint: str) -> str:
    return fingerprint[-KEY_ID_LEN:]


# --------- X25519 + HKDF + AES (wrap / seal) ----------
def derive_key(sender_priv: x25519.X25519PrivateKey, recipient_pub: x25519.X25519PublicKey,
               salt: Optional[bytes] = None, info: bytes = HKDF_INFO) -> bytes:
    shared = sender_priv.exchange(recipient_pub)
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=salt, info=info)
    return hkdf.derive(shared)  # 256-bit wrapping key


def aead_encrypt(key: bytes, plaintext: bytes, aad: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    aes = AESGCM(key)
    nonce = os.urandom(NONCE_LEN)
    ct = aes.encrypt(nonce, plaintext, aad)
    return nonce, ct


def aead_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, aad: Optional[bytes] = None) -> bytes:
    aes = AESGCM(key)
    return aes.decrypt(nonce, ciphertext, aad)


def _aad(field: str, fingerprints: Iterable[str]) -> bytes:
    return canonical_json({
        "v": SCHEMA_VERSION,
        "alg": SEAL_ALGORITHM,
        "field": field,
        "to": sorted(fingerprints),
    })


def _wrap_for(content_key: bytes, fpr: str, recipient_pub: x25519.X25519PublicKey) -> Dict[str, str]:
    eph = x25519.X25519PrivateKey.generate()
    eph_raw = _raw_public(eph.public_key())
    wrapping_key = derive_key(eph, recipient_pub, salt=eph_raw + _raw_public(recipient_pub))
    return {"fpr": fpr, "epk": b64e(eph_raw), "wk": b64e(aes_key_wrap(wrapping_key, content_key))}


def seal_text(plaintext: str, recipients: Iterable[Recipient], field: str) -> str:
    """
    Encrypt ``plaintext`` once so that every holder of a private key among
    ``recipients`` can open it. Returns armored text.
    """
    targets = list(recipients)
    if not targets:
        raise EncryptionBackendError("cannot seal to an empty recipient set")
    try:
        content_key = AESGCM.generate_key(bit_length=CONTENT_KEY_LEN * 8)
        fprs = [fpr for fpr, _ in targets]
        nonce, ct = aead_encrypt(content_key, plaintext.encode("utf-8"), aad=_aad(field, fprs))
        stanzas = [_wrap_for(content_key, fpr, pk) for fpr, pk in targets]
    except (ValueError, TypeError) as e:
        raise EncryptionBackendError(f"sealing {field} failed: {type(e).__name__}") from e
    return armor({
        "v": SCHEMA_VERSION,
        "alg": SEAL_ALGORITHM,
        "field": field,
        "nonce": b64e(nonce),
        "ct": b64e(ct),
        "to": stanzas,
    })


def open_text(armored: str, sk: x25519.X25519PrivateKey, field: str) -> str:
    """
    Open an armored container with ``sk``.

    Raises InvalidEnvelopeFormat for unparsable input and KeyMismatchOrCorrupt
    when the key is not a target or the ciphertext fails authentication.
    """
    container = dearmor(armored)
    if container.get("field") != field:
        raise KeyMismatchOrCorrupt(f"sealed field is {container.get('field')!r}, expected {field!r}")

    my_fpr = fingerprint_of_private(sk)
    stanzas = container["to"]
    stanza = next((s for s in stanzas if s.get("fpr") == my_fpr), None)
    if stanza is None:
        raise KeyMismatchOrCorrupt(f"message is not addressed to key {key_id(my_fpr)}")

    try:
        eph_pub = x25519.X25519PublicKey.from_public_bytes(b64d(stanza["epk"]))
        wrapping_key = derive_key(sk, eph_pub, salt=b64d(stanza["epk"]) + _raw_public(sk.public_key()))
        content_key = aes_key_unwrap(wrapping_key, b64d(stanza["wk"]))
        pt = aead_decrypt(content_key, b64d(container["nonce"]), b64d(container["ct"]),
                          aad=_aad(field, [s.get("fpr", "") for s in stanzas]))
        return pt.decode("utf-8")
    except (InvalidUnwrap, InvalidTag) as e:
        raise KeyMismatchOrCorrupt(f"ciphertext for {field} failed authentication") from e
    except (KeyError, ValueError, TypeError, binascii.Error) as e:
        raise KeyMismatchOrCorrupt(f"sealed {field} is damaged: {type(e).__name__}") from e


# --------- Armor ----------
def armor(container: Dict[str, Any]) -> str:
    body = b64e(canonical_json(container))
    return "\n".join([ARMOR_HEADER, "", *wrap_lines(body, ARMOR_WIDTH), ARMOR_FOOTER]) + "\n"


def is_armored(text: Optional[str]) -> bool:
    if not isinstance(text, str):
        return False
    stripped = text.strip()
    return stripped.startswith(ARMOR_HEADER) and stripped.endswith(ARMOR_FOOTER)


def dearmor(text: str) -> Dict[str, Any]:
    if not is_armored(text):
        raise InvalidEnvelopeFormat("sealed text is missing its armor lines")
    lines = [l.strip() for l in text.strip().splitlines()[1:-1]]
    try:
        container = json.loads(b64d("".join(lines)).decode("utf-8"))
    except (ValueError, binascii.Error) as e:
        raise InvalidEnvelopeFormat(f"armored body cannot be decoded: {type(e).__name__}") from e
    if not isinstance(container, dict) or not isinstance(container.get("to"), list) \
            or not all(isinstance(s, dict) for s in container["to"]):
        raise InvalidEnvelopeFormat("armored body is not a sealed container")
    if not all(isinstance(container.get(k), str) for k in _CONTAINER_TEXT_FIELDS) \
            or not all(isinstance(s.get(k), str) for s in container["to"] for k in _STANZA_FIELDS):
        raise InvalidEnvelopeFormat("sealed container has malformed fields")
    if container.get("alg") != SEAL_ALGORITHM:
        raise InvalidEnvelopeFormat(f"unsupported algorithm {container.get('alg')!r}")
    return container


def peek_fingerprints(armored: str) -> List[str]:
    """Fingerprints a container was sealed to, without decrypting. Debug aid."""
    return [s.get("fpr", "") for s in dearmor(armored)["to"]]
