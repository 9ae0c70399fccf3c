from sealmail_core.lifecycle import HealthStatus, KeyState


def test_check_wipe_rebuild(core):
    diag = core.diagnostics
    assert diag.check_account("alice").status is HealthStatus.NO_KEYS

    first = diag.rebuild("alice", "Alice")
    assert diag.check_account("alice").valid

    assert diag.wipe("alice") is True
    assert diag.wipe("alice") is False
    assert core.lifecycle.state("alice") is KeyState.REVOKED
    assert diag.check_account("alice").has_private_key is False

    second = diag.rebuild("alice")
    assert second.fingerprint != first.fingerprint
    assert diag.check_account("alice").fingerprint == second.fingerprint


def test_rebuild_all_continues_past_failures(core, monkeypatch):
    core.lifecycle.generate("alice")
    old = core.vault.active_record("alice").fingerprint

    from sealmail_core.errors import KeyGenerationError
    real = core.lifecycle.regenerate

    def flaky(account_id, identity=""):
        if account_id == "bob":
            raise KeyGenerationError("keygen failed for bob", account_id="bob")
        return real(account_id, identity)

    monkeypatch.setattr(core.lifecycle, "regenerate", flaky)
    report = core.diagnostics.rebuild_all([("alice", "Alice"), ("bob", "Bob"), ("carol", "Carol")])

    assert report["alice"]["ok"] and report["carol"]["ok"]
    assert report["alice"]["health"]["fingerprint"] != old
    assert report["bob"]["ok"] is False
    assert report["bob"]["error"]["code"] == "E_EMAIL_KEYGEN_FAILED"
    assert core.lifecycle.state("carol") is KeyState.ACTIVE
