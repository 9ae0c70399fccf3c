import pytest

from sealmail_core.config import Settings
from sealmail_core.core import create_core
from sealmail_core.storage import InMemoryStorage, SQLiteStorage
from sealmail_core.vault import KeyVault

PASSPHRASE = "correct horse battery staple"


@pytest.fixture
def settings():
    return Settings(master_passphrase=PASSPHRASE, storage_provider="memory", lookup_timeout=2.0, keygen_timeout=10.0)


@pytest.fixture
def core(settings):
    c = create_core(settings, storage=InMemoryStorage())
    yield c
    c.close()


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        s = InMemoryStorage()
    else:
        s = SQLiteStorage(str(tmp_path / "vault.db"))
    yield s
    s.close()


@pytest.fixture
def vault(storage):
    return KeyVault(storage, PASSPHRASE)
