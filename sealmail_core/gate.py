"""
sealmail_core.gate
------------------
The Decryption Gate: reconstructs plaintext for a viewer at display time.

Failures are kept apart because their remedies differ:
  - ViewerHasNoKey: the viewer must enroll a key
  - KeyMismatchOrCorrupt: the viewer's key rotated since send time, or the
    stored ciphertext is damaged; contact the sender
  - VaultUnlockError: storage or passphrase corruption; operator escalation
"""

from __future__ import annotations
import logging

from .crypto import fingerprint_of_private, key_id, open_text, peek_fingerprints
from .envelope import EncryptionEnvelope, PlaintextResult
from .errors import KeyMismatchOrCorrupt, NoActiveKey, ViewerHasNoKey
from .logger import get_logger
from .vault import KeyVault

log = get_logger("sealmail.gate")


class DecryptionGate:
    def __init__(self, vault: KeyVault, debug: bool = False):
        self.vault = vault
        self.debug = debug
        if debug:
            log.setLevel(logging.DEBUG)

    def open(self, envelope: EncryptionEnvelope, viewer_account_id: str) -> PlaintextResult:
        if not envelope.is_encrypted:
            return PlaintextResult(envelope.subject, envelope.body, was_encrypted=False)

        try:
            private_key = self.vault.unlock_private_key(viewer_account_id)
        except NoActiveKey as e:
            raise ViewerHasNoKey(
                f"{viewer_account_id} has no active key to open this message", account_id=viewer_account_id
            ) from e

        viewer_fpr = fingerprint_of_private(private_key)
        if self.debug:
            try:
                sealed_to = ", ".join(key_id(f) for f in peek_fingerprints(envelope.body))
            except KeyMismatchOrCorrupt:
                sealed_to = "<unreadable>"
            log.debug(f"[GATE] message sealed to: {sealed_to}; viewer key: {key_id(viewer_fpr)}")

        try:
            subject = open_text(envelope.subject, private_key, field="subject")
            body = open_text(envelope.body, private_key, field="body")
        except KeyMismatchOrCorrupt as e:
            rotated = viewer_fpr not in envelope.target_fingerprints
            log.warning(f"[GATE] cannot open message for {viewer_account_id}: "
                        + ("viewer key not among targets" if rotated else "ciphertext rejected"))
            e.account_id = viewer_account_id
            raise
        finally:
            del private_key

        return PlaintextResult(subject, body, was_encrypted=True)
