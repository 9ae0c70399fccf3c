import pytest

from sealmail_core.crypto import armor, dearmor
from sealmail_core.envelope import EncryptionEnvelope, EnvelopeMode
from sealmail_core.errors import (
    DecryptionError, InvalidEnvelopeFormat, KeyMismatchOrCorrupt, VaultUnlockError, ViewerHasNoKey,
)
from sealmail_core.gate import DecryptionGate
from sealmail_core.vault import KeyVault


def test_plaintext_fast_path_needs_no_key(core):
    env = EncryptionEnvelope.plaintext("hello", "world")
    result = core.gate.open(env, "nobody")
    assert (result.subject, result.body, result.was_encrypted) == ("hello", "world", False)


def test_open_is_idempotent(core):
    core.lifecycle.generate("alice")
    env, _ = core.builder.build("alice", [], "s", "body text")
    assert core.gate.open(env, "alice") == core.gate.open(env, "alice")


def test_viewer_without_key(core):
    core.lifecycle.generate("alice")
    env, _ = core.builder.build("alice", [], "s", "b")

    with pytest.raises(ViewerHasNoKey) as exc:
        core.gate.open(env, "mallory")
    assert exc.value.code == "E_EMAIL_NO_PRIVATE_KEY"
    assert exc.value.account_id == "mallory"
    assert isinstance(exc.value, DecryptionError)
    assert not isinstance(exc.value, KeyMismatchOrCorrupt)


def test_non_target_viewer_is_mismatch(core):
    core.lifecycle.generate("alice")
    core.lifecycle.generate("eve")
    env, _ = core.builder.build("alice", [], "s", "b")

    with pytest.raises(KeyMismatchOrCorrupt) as exc:
        core.gate.open(env, "eve")
    assert exc.value.code == "E_EMAIL_DECRYPT_FAILED"
    assert exc.value.account_id == "eve"


def test_sender_after_rotation_is_mismatch_not_missing(core, caplog):
    core.lifecycle.generate("alice")
    env, _ = core.builder.build("alice", [], "s", "b")
    core.lifecycle.regenerate("alice")

    with pytest.raises(KeyMismatchOrCorrupt):
        core.gate.open(env, "alice")
    assert "viewer key not among targets" in caplog.text


def test_garbled_ciphertext_is_invalid_format(core):
    rec = core.lifecycle.generate("alice")
    env = EncryptionEnvelope(EnvelopeMode.ENCRYPTED, "not armored", "not armored",
                             target_fingerprints=(rec.fingerprint,))
    with pytest.raises(InvalidEnvelopeFormat) as exc:
        core.gate.open(env, "alice")
    assert exc.value.code == "E_EMAIL_INVALID_ENCRYPTED_FORMAT"


def test_unlock_failure_propagates_verbatim(core):
    core.lifecycle.generate("alice")
    env, _ = core.builder.build("alice", [], "s", "b")

    gate = DecryptionGate(KeyVault(core.vault.storage, "not the passphrase"))
    with pytest.raises(VaultUnlockError):
        gate.open(env, "alice")


def test_debug_logs_target_key_ids(core, caplog):
    rec = core.lifecycle.generate("alice")
    env, _ = core.builder.build("alice", [], "s", "secret body")

    caplog.set_level("DEBUG")
    gate = DecryptionGate(core.vault, debug=True)
    assert gate.open(env, "alice").body == "secret body"
    assert rec.fingerprint[-16:] in caplog.text
    assert "secret body" not in caplog.text


@pytest.mark.parametrize("damage", [
    lambda c: c["to"][0].update(epk=12345),
    lambda c: c["to"][0].update(wk=None),
    lambda c: c["to"][0].update(fpr=7),
    lambda c: c.update(nonce=None),
    lambda c: c.update(ct=["not", "text"]),
])
def test_malformed_container_fields_are_reported_as_corrupt(core, damage):
    rec = core.lifecycle.generate("alice")
    env, _ = core.builder.build("alice", [], "s", "b")

    container = dearmor(env.body)
    damage(container)
    broken = EncryptionEnvelope(EnvelopeMode.ENCRYPTED, env.subject, armor(container),
                                target_fingerprints=(rec.fingerprint,))
    with pytest.raises(KeyMismatchOrCorrupt):
        core.gate.open(broken, "alice")


def test_undecodable_stanza_values_are_reported_as_corrupt(core):
    rec = core.lifecycle.generate("alice")
    env, _ = core.builder.build("alice", [], "s", "b")

    container = dearmor(env.body)
    container["to"][0]["epk"] = "!!not base64!!"
    broken = EncryptionEnvelope(EnvelopeMode.ENCRYPTED, env.subject, armor(container),
                                target_fingerprints=(rec.fingerprint,))
    with pytest.raises(KeyMismatchOrCorrupt):
        core.gate.open(broken, "alice")
