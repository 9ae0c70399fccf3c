"""
sealmail_core.builder
---------------------
The Envelope Builder: turns a subject, a body and a recipient set into an
EncryptionEnvelope, choosing between full encryption and an explicit,
named plaintext fallback.

Decision rule:
  1. the sender must hold an active key, or encryption is abandoned
     (a sender who cannot reread their own Sent copy is worse than an
     unencrypted message)
  2. every recipient must resolve to a public key within the lookup timeout
  3. subject and body are sealed independently to {sender} ∪ {recipients};
     both share one mode, never one without the other
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, Iterable, List, Tuple

from .constants import DEFAULT_LOOKUP_TIMEOUT
from .crypto import seal_text
from .directory import PublicKey, PublicKeyDirectory, narrow_public_key
from .envelope import EncryptionEnvelope, EncryptionOutcome, EnvelopeMode
from .errors import EncryptionBackendError
from .lifecycle import KeyLifecycleManager
from .logger import get_logger
from .utils import unique

log = get_logger("sealmail.builder")


class EnvelopeBuilder:
    def __init__(self, lifecycle: KeyLifecycleManager, directory: PublicKeyDirectory,
                 lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT):
        self.lifecycle = lifecycle
        self.directory = directory
        self.lookup_timeout = lookup_timeout

    def build(self, sender_account_id: str, recipient_account_ids: Iterable[str],
              subject: str, body: str) -> Tuple[EncryptionEnvelope, EncryptionOutcome]:
        # the sender's key always comes from the vault, never the directory
        recipients = [r for r in unique(recipient_account_ids) if r != sender_account_id]
        resolved, missing = self._resolve_recipients(recipients)

        # the sender's generation must not rotate between resolving and sealing
        with self.lifecycle.vault.account_lock(sender_account_id):
            sender_key = self.lifecycle.active_public_key(sender_account_id)
            if sender_key is None:
                return self._fallback(subject, body, EncryptionOutcome.sender_key_missing(sender_account_id))
            if missing:
                return self._fallback(subject, body, EncryptionOutcome.recipient_key_missing(tuple(missing)))

            targets = self._targets([sender_key] + resolved)
            try:
                sealed_subject = seal_text(subject, targets, field="subject")
                sealed_body = seal_text(body, targets, field="body")
            except EncryptionBackendError as e:
                log.error(f"[BUILD] sealing failed for message from {sender_account_id}: {e}")
                return self._fallback(subject, body, EncryptionOutcome.backend_error(str(e)))

        envelope = EncryptionEnvelope(
            mode=EnvelopeMode.ENCRYPTED,
            subject=sealed_subject,
            body=sealed_body,
            target_fingerprints=tuple(fpr for fpr, _ in targets),
        )
        log.info(f"[BUILD] sealed message from {sender_account_id} to {len(targets)} key(s)")
        return envelope, EncryptionOutcome.encrypted()

    def _resolve_recipients(self, recipients: List[str]) -> Tuple[List[PublicKey], List[str]]:
        """
        One worker per recipient, so every lookup starts at once and the
        timeout bounds each of them. Timeouts and failures count as missing.
        """
        if not recipients:
            return [], []
        # shut down without waiting, a hung lookup is left to finish on its own thread
        pool = ThreadPoolExecutor(max_workers=len(recipients), thread_name_prefix="sealmail-lookup")
        try:
            futures = {rid: pool.submit(self.directory.resolve_public_key, rid) for rid in recipients}
            wait(futures.values(), timeout=self.lookup_timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        resolved: List[PublicKey] = []
        missing: List[str] = []
        for rid, fut in futures.items():
            if not fut.done():
                fut.cancel()
                log.warning(f"[BUILD] key lookup for {rid} timed out after {self.lookup_timeout}s")
                missing.append(rid)
                continue
            exc = fut.exception()
            if exc is not None:
                log.warning(f"[BUILD] key lookup for {rid} failed: {type(exc).__name__}")
                missing.append(rid)
                continue
            key = narrow_public_key(rid, fut.result())
            if key is None:
                missing.append(rid)
            else:
                resolved.append(key)
        return resolved, missing

    @staticmethod
    def _targets(keys: List[PublicKey]):
        seen: Dict[str, PublicKey] = {}
        for key in keys:
            seen.setdefault(key.fingerprint, key)
        return [(fpr, key.load()) for fpr, key in seen.items()]

    @staticmethod
    def _fallback(subject: str, body: str,
                  outcome: EncryptionOutcome) -> Tuple[EncryptionEnvelope, EncryptionOutcome]:
        log.warning(f"[BUILD] degraded to plaintext: {outcome.kind.value}"
                    + (f" ({', '.join(outcome.missing)})" if outcome.missing else ""))
        return EncryptionEnvelope.plaintext(subject, body), outcome
