"""
sealmail_core.core
------------------
Wires the components together from Settings.

The vault is built once with the master passphrase and handed explicitly
to every component that needs it; nothing reaches for a global.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging

from .builder import EnvelopeBuilder
from .config import Settings
from .diagnostics import Diagnostics
from .directory import HTTPDirectory, PublicKeyDirectory, VaultDirectory
from .gate import DecryptionGate
from .lifecycle import KeyLifecycleManager
from .logger import get_logger
from .storage import StorageProvider, load_storage_provider
from .vault import KeyVault


@dataclass
class SealmailCore:
    settings: Settings
    vault: KeyVault
    lifecycle: KeyLifecycleManager
    builder: EnvelopeBuilder
    gate: DecryptionGate
    diagnostics: Diagnostics

    def close(self) -> None:
        self.lifecycle.shutdown()
        self.vault.storage.close()

    def __enter__(self) -> "SealmailCore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def create_core(settings: Optional[Settings] = None, storage: Optional[StorageProvider] = None,
                directory: Optional[PublicKeyDirectory] = None) -> SealmailCore:
    """Build a ready-to-use core. Raises MasterKeyMissing before touching storage."""
    settings = settings or Settings.from_env()
    passphrase = settings.require_master_passphrase()

    log = get_logger("sealmail.core", level=logging.DEBUG if settings.debug else None, to_file=settings.log_file)

    storage = storage or load_storage_provider(settings.storage_config())
    vault = KeyVault(storage, passphrase)
    lifecycle = KeyLifecycleManager(vault, workers=settings.keygen_workers, keygen_timeout=settings.keygen_timeout)

    if directory is None:
        if settings.directory_url:
            directory = HTTPDirectory(settings.directory_url, timeout=settings.lookup_timeout)
        else:
            directory = VaultDirectory(vault)

    core = SealmailCore(
        settings=settings,
        vault=vault,
        lifecycle=lifecycle,
        builder=EnvelopeBuilder(lifecycle, directory, lookup_timeout=settings.lookup_timeout),
        gate=DecryptionGate(vault, debug=settings.debug),
        diagnostics=Diagnostics(lifecycle),
    )
    log.info(f"[CORE] ready: storage={type(storage).__name__} directory={type(directory).__name__}")
    return core
