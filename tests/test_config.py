import pytest

from sealmail_core.config import Settings
from sealmail_core.core import create_core
from sealmail_core.directory import HTTPDirectory, VaultDirectory
from sealmail_core.errors import MasterKeyMissing
from sealmail_core.storage import InMemoryStorage, SQLiteStorage


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("SEALMAIL_MASTER_PASSPHRASE", "pw")
    monkeypatch.setenv("SEALMAIL_STORAGE_PROVIDER", "MEMORY")
    monkeypatch.setenv("SEALMAIL_LOOKUP_TIMEOUT", "0.5")
    monkeypatch.setenv("SEALMAIL_KEYGEN_WORKERS", "2")
    monkeypatch.setenv("SEALMAIL_DEBUG", "true")

    s = Settings.from_env(keygen_timeout=3)
    assert s.master_passphrase == "pw"
    assert s.storage_provider == "memory"
    assert s.lookup_timeout == 0.5
    assert s.keygen_workers == 2
    assert s.keygen_timeout == 3
    assert s.debug is True
    assert "pw" not in repr(s)


def test_unknown_override_is_rejected(monkeypatch):
    with pytest.raises(ValueError):
        Settings.from_env({"colour": "blue"})


def test_missing_master_passphrase_fails_at_startup(monkeypatch):
    monkeypatch.delenv("SEALMAIL_MASTER_PASSPHRASE", raising=False)
    with pytest.raises(MasterKeyMissing):
        create_core(Settings.from_env(storage_provider="memory"))


def test_create_core_wiring(tmp_path):
    settings = Settings(master_passphrase="pw", db_path=str(tmp_path / "db" / "sealmail.db"))
    with create_core(settings) as core:
        assert isinstance(core.vault.storage, SQLiteStorage)
        assert isinstance(core.builder.directory, VaultDirectory)
        core.lifecycle.generate("alice")
        assert core.diagnostics.check_account("alice").valid

    http = Settings(master_passphrase="pw", directory_url="https://dir.example.com", lookup_timeout=0.7)
    with create_core(http, storage=InMemoryStorage()) as core:
        assert isinstance(core.builder.directory, HTTPDirectory)
        assert core.builder.directory.timeout == 0.7
