import threading

import pytest

from sealmail_core.crypto import compute_pubkey_fingerprint, generate_keypair
from sealmail_core.errors import KeyGenerationError, VaultWriteError
from sealmail_core.lifecycle import HealthStatus, Identity, KeyLifecycleManager, KeyState
from sealmail_core.storage import InMemoryStorage
from sealmail_core.vault import KeyVault

from conftest import PASSPHRASE


@pytest.fixture
def lifecycle(vault):
    lm = KeyLifecycleManager(vault, workers=2, keygen_timeout=10.0)
    yield lm
    lm.shutdown()


def test_state_machine(lifecycle):
    assert lifecycle.state("alice") is KeyState.ABSENT

    first = lifecycle.generate("alice", Identity("Alice", "alice@example.com"))
    assert lifecycle.state("alice") is KeyState.ACTIVE
    assert first.identity == "Alice <alice@example.com>"

    assert lifecycle.revoke("alice") is True
    assert lifecycle.state("alice") is KeyState.REVOKED

    second = lifecycle.generate("alice")
    assert lifecycle.state("alice") is KeyState.ACTIVE
    assert second.fingerprint != first.fingerprint


def test_generate_from_active_is_rejected(lifecycle):
    lifecycle.generate("alice")
    with pytest.raises(VaultWriteError):
        lifecycle.generate("alice")


def test_regenerate_replaces_generation(lifecycle, storage):
    old = lifecycle.generate("alice")
    new = lifecycle.regenerate("alice")

    assert new.fingerprint != old.fingerprint
    assert lifecycle.active_public_key("alice").fingerprint == new.fingerprint
    history = lifecycle.vault.history("alice")
    assert [r.is_active for r in history] == [False, True]
    assert [e["event_type"] for e in storage.list_events()] == ["key.stored", "key.revoked", "key.stored"]


def test_regenerate_from_absent_behaves_like_generate(lifecycle):
    rec = lifecycle.regenerate("alice")
    assert lifecycle.state("alice") is KeyState.ACTIVE
    assert lifecycle.active_public_key("alice").fingerprint == rec.fingerprint


def test_revoke_twice_is_a_noop(lifecycle):
    lifecycle.generate("alice")
    assert lifecycle.revoke("alice") is True
    snapshot = [r.describe() for r in lifecycle.vault.history("alice")]
    assert lifecycle.revoke("alice") is False
    assert [r.describe() for r in lifecycle.vault.history("alice")] == snapshot
    assert lifecycle.revoke("nobody") is False


def test_verify_ok(lifecycle):
    rec = lifecycle.generate("alice")
    health = lifecycle.verify("alice")

    assert health.status is HealthStatus.OK and health.valid
    assert health.has_public_key and health.has_private_key and health.keys_match
    assert health.fingerprint == rec.fingerprint
    assert health.public_key_id == health.private_key_id == rec.fingerprint[-16:]
    assert health.to_dict()["code"] == "OK"


def test_verify_no_keys_and_after_revoke(lifecycle):
    assert lifecycle.verify("alice").status is HealthStatus.NO_KEYS

    lifecycle.generate("alice")
    lifecycle.revoke("alice")
    health = lifecycle.verify("alice")
    assert health.status is HealthStatus.NO_KEYS
    assert health.has_private_key is False
    assert health.code == "E_EMAIL_NO_KEYS"


def test_verify_inconsistent_record(lifecycle, storage):
    _, pem = generate_keypair()
    storage.insert_public_key("alice", pem, compute_pubkey_fingerprint(pem), "t1")

    health = lifecycle.verify("alice")
    assert health.status is HealthStatus.INCONSISTENT
    assert health.has_public_key and not health.has_private_key
    assert "private" in health.message


def test_verify_unlock_failure(storage):
    lm = KeyLifecycleManager(KeyVault(storage, PASSPHRASE))
    lm.generate("alice")
    lm.shutdown()

    other = KeyLifecycleManager(KeyVault(storage, "wrong passphrase"))
    health = other.verify("alice")
    other.shutdown()
    assert health.status is HealthStatus.UNLOCK_FAILED
    assert not health.valid
    assert "wrong passphrase" not in health.message


def test_verify_detects_swapped_private_half(lifecycle, storage):
    lifecycle.generate("alice")
    lifecycle.generate("bob")
    bob_blob = storage.get_active_key("bob").encrypted_private_key
    storage.set_encrypted_private_key(storage.get_active_key("alice").key_id, bob_blob)

    health = lifecycle.verify("alice")
    assert health.status is HealthStatus.KEY_MISMATCH
    assert health.public_key_id != health.private_key_id


def test_keygen_backend_failure_leaves_account_absent(vault):
    def broken():
        raise RuntimeError("no entropy")

    lm = KeyLifecycleManager(vault, keygen=broken)
    with pytest.raises(KeyGenerationError) as exc:
        lm.generate("alice")
    lm.shutdown()

    assert exc.value.code == "E_EMAIL_KEYGEN_FAILED"
    assert lm.state("alice") is KeyState.ABSENT


def test_mismatched_keygen_output_is_rejected(vault):
    def mismatched():
        sk, _ = generate_keypair()
        _, pem = generate_keypair()
        return sk, pem

    lm = KeyLifecycleManager(vault, keygen=mismatched)
    with pytest.raises(KeyGenerationError):
        lm.generate("alice")
    lm.shutdown()
    assert lm.state("alice") is KeyState.ABSENT


def test_timed_out_generation_never_commits():
    release = threading.Event()

    def slow():
        release.wait(5)
        return generate_keypair()

    lm = KeyLifecycleManager(KeyVault(InMemoryStorage(), PASSPHRASE), keygen=slow, keygen_timeout=0.05)
    with pytest.raises(KeyGenerationError):
        lm.generate("alice")
    release.set()
    lm.shutdown(wait=True)

    assert lm.state("alice") is KeyState.ABSENT


def test_cancelled_generation_never_commits():
    started, release = threading.Event(), threading.Event()

    def slow():
        started.set()
        release.wait(5)
        return generate_keypair()

    lm = KeyLifecycleManager(KeyVault(InMemoryStorage(), PASSPHRASE), keygen=slow)
    task = lm.generate_async("alice")
    assert started.wait(5)
    task.cancel()
    release.set()

    with pytest.raises(KeyGenerationError):
        task.result()
    lm.shutdown(wait=True)
    assert lm.state("alice") is KeyState.ABSENT


def test_slow_generation_does_not_block_other_accounts():
    started, release = threading.Event(), threading.Event()

    def keygen():
        if not started.is_set():
            started.set()
            release.wait(5)
        return generate_keypair()

    lm = KeyLifecycleManager(KeyVault(InMemoryStorage(), PASSPHRASE), workers=2, keygen=keygen)
    slow_task = lm.generate_async("slow")
    assert started.wait(5)
    fast = lm.generate("fast", timeout=5)
    assert fast.is_active
    assert not slow_task.done()

    release.set()
    assert slow_task.result(timeout=5).is_active
    lm.shutdown()


def test_failed_regenerate_keeps_previous_generation(lifecycle, storage, monkeypatch):
    old = lifecycle.generate("alice")

    def boom(key_id, blob):
        raise OSError("disk full")

    monkeypatch.setattr(storage, "set_encrypted_private_key", boom)
    with pytest.raises(VaultWriteError):
        lifecycle.regenerate("alice")
    monkeypatch.undo()

    assert lifecycle.state("alice") is KeyState.ACTIVE
    assert lifecycle.vault.active_record("alice").fingerprint == old.fingerprint
    assert [r.fingerprint for r in lifecycle.vault.history("alice")] == [old.fingerprint]
    assert [e["event_type"] for e in storage.list_events()] == ["key.stored"]
    assert lifecycle.verify("alice").valid


def test_generation_past_the_account_lock_still_commits(vault, monkeypatch):
    entered, release = threading.Event(), threading.Event()
    real_store = vault.store

    def slow_store(*args, **kwargs):
        entered.set()
        release.wait(5)
        return real_store(*args, **kwargs)

    monkeypatch.setattr(vault, "store", slow_store)
    lm = KeyLifecycleManager(vault)
    task = lm.generate_async("alice")
    assert entered.wait(5)

    with pytest.raises(KeyGenerationError):
        task.result(timeout=0.05)
    release.set()
    lm.shutdown(wait=True)

    assert lm.state("alice") is KeyState.ACTIVE
