"""
sealmail_core.utils
-------------------
Small helpers for base64, timestamps, canonical JSON and armor line wrapping.
Canonical JSON keeps the associated data bound into every sealed field stable
across processes.
"""

from __future__ import annotations
import base64, json, hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"), validate=True)


def now_ts() -> str:
    # RFC3339 / ISO 8601 in UTC, microsecond precision so rotations in the
    # same second still order correctly
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def canonical_json(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def wrap_lines(text: str, width: int) -> List[str]:
    return [text[i:i + width] for i in range(0, len(text), width)] or [""]


def unique(items: Iterable[str]) -> List[str]:
    """Order-preserving de-duplication."""
    seen = set()
    out = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out
