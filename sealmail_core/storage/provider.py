# sealmail_core/storage/provider.py
from __future__ import annotations
from typing import Optional, Dict, Any, List, ContextManager
from sealmail_core.storage.models import KeyRecord


class DuplicateActiveKey(Exception):
    """Raised by providers when a second non-revoked row is written for an account."""


class StorageProvider:
    # Interface
    def transaction(self) -> ContextManager["StorageProvider"]: ...
    def insert_public_key(self, account_id: str, public_key: str, fingerprint: str,
                          created_at: str, identity: str = "") -> int: ...
    def set_encrypted_private_key(self, key_id: int, blob: str) -> None: ...
    def get_active_key(self, account_id: str) -> Optional[KeyRecord]: ...
    def get_latest_key(self, account_id: str) -> Optional[KeyRecord]: ...
    def revoke_key(self, account_id: str, revoked_at: str) -> bool: ...
    def fetch_by_fingerprint(self, fpr: str) -> Optional[KeyRecord]: ...
    def list_keys(self, account_id: Optional[str] = None) -> List[KeyRecord]: ...
    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None: ...
    def list_events(self) -> List[Dict[str, Any]]: ...
    def close(self) -> None: ...
