# sealmail_core/storage/__init__.py
from __future__ import annotations

from .models import KeyRecord
from .provider import StorageProvider, DuplicateActiveKey
from .providers.memory_provider import InMemoryStorage
from .providers.sqlite_provider import SQLiteStorage
from sealmail_core.constants import DEFAULT_DB_PATH
import os


def load_storage_provider(config: dict | None = None) -> StorageProvider:
    """
    Factory resolver for selecting the vault's storage backend.

        - sqlite (default)
        - memory
    """
    config = config or {}
    provider = config.get("provider") or os.getenv("SEALMAIL_STORAGE_PROVIDER", "sqlite")

    if provider == "memory":
        return InMemoryStorage()

    if provider == "sqlite":
        db_path = config.get("sqlite_path") or os.getenv("SEALMAIL_DB_PATH", DEFAULT_DB_PATH)
        return SQLiteStorage(db_path)

    raise ValueError(f"Unknown storage provider: {provider}")


__all__ = [
    "KeyRecord",
    "StorageProvider",
    "DuplicateActiveKey",
    "InMemoryStorage",
    "SQLiteStorage",
    "load_storage_provider",
]
