# sealmail_core/config.py
from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional
import os

from .constants import DEFAULT_DB_PATH, DEFAULT_KEYGEN_TIMEOUT, DEFAULT_KEYGEN_WORKERS, DEFAULT_LOOKUP_TIMEOUT
from .errors import MasterKeyMissing


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    Process-wide configuration, read once at startup.

    The master passphrase is read-only after initialization and never
    rendered by repr().
    """
    master_passphrase: str = field(default="", repr=False)
    storage_provider: str = "sqlite"
    db_path: str = DEFAULT_DB_PATH
    lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT
    keygen_timeout: float = DEFAULT_KEYGEN_TIMEOUT
    keygen_workers: int = DEFAULT_KEYGEN_WORKERS
    directory_url: Optional[str] = None
    debug: bool = False
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Any]] = None, **kwargs) -> "Settings":
        """Build settings from SEALMAIL_* environment variables; overrides win."""
        settings = cls(
            master_passphrase=os.getenv("SEALMAIL_MASTER_PASSPHRASE", ""),
            storage_provider=os.getenv("SEALMAIL_STORAGE_PROVIDER", "sqlite").lower(),
            db_path=os.getenv("SEALMAIL_DB_PATH", DEFAULT_DB_PATH),
            lookup_timeout=float(os.getenv("SEALMAIL_LOOKUP_TIMEOUT", DEFAULT_LOOKUP_TIMEOUT)),
            keygen_timeout=float(os.getenv("SEALMAIL_KEYGEN_TIMEOUT", DEFAULT_KEYGEN_TIMEOUT)),
            keygen_workers=int(os.getenv("SEALMAIL_KEYGEN_WORKERS", DEFAULT_KEYGEN_WORKERS)),
            directory_url=os.getenv("SEALMAIL_DIRECTORY_URL") or None,
            debug=_flag(os.getenv("SEALMAIL_DEBUG")),
            log_file=os.getenv("SEALMAIL_LOG_FILE") or None,
        )
        known = {f.name for f in fields(cls)}
        for key, value in {**(overrides or {}), **kwargs}.items():
            if key not in known:
                raise ValueError(f"Unknown setting: {key}")
            setattr(settings, key, value)
        return settings

    def require_master_passphrase(self) -> str:
        if not self.master_passphrase:
            raise MasterKeyMissing("SEALMAIL_MASTER_PASSPHRASE is not set")
        return self.master_passphrase

    def storage_config(self) -> dict:
        return {"provider": self.storage_provider, "sqlite_path": self.db_path}
