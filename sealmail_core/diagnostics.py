"""
sealmail_core.diagnostics
-------------------------
Operator-facing view of an account's key state, independent of any message.
Adds no state of its own.
"""

from __future__ import annotations
from typing import Dict, Iterable, Tuple, Union

from .errors import SealmailError
from .lifecycle import Identity, KeyHealth, KeyLifecycleManager
from .logger import get_logger
from .storage.models import KeyRecord

log = get_logger("sealmail.diagnostics")


class Diagnostics:
    def __init__(self, lifecycle: KeyLifecycleManager):
        self.lifecycle = lifecycle

    def check_account(self, account_id: str) -> KeyHealth:
        return self.lifecycle.verify(account_id)

    def wipe(self, account_id: str) -> bool:
        return self.lifecycle.revoke(account_id)

    def rebuild(self, account_id: str, identity: Union[Identity, str] = "") -> KeyRecord:
        return self.lifecycle.regenerate(account_id, identity)

    def rebuild_all(self, accounts: Iterable[Tuple[str, Union[Identity, str]]]) -> Dict[str, dict]:
        """
        Bulk reset: for each (account_id, identity) revoke, regenerate and
        verify. A failure on one account is recorded and the run continues.

        Returns {account_id: {"ok": bool, "health": dict | None, "error": dict | None}}.
        """
        report: Dict[str, dict] = {}
        for account_id, identity in accounts:
            try:
                self.lifecycle.revoke(account_id)
                self.lifecycle.regenerate(account_id, identity)
                health = self.lifecycle.verify(account_id)
            except SealmailError as e:
                log.error(f"[DIAG] rebuild failed for {account_id}: {e.code}")
                report[account_id] = {"ok": False, "health": None, "error": e.to_dict()}
                continue
            report[account_id] = {"ok": health.valid, "health": health.to_dict(), "error": None}

        ok = sum(1 for r in report.values() if r["ok"])
        log.info(f"[DIAG] rebuilt keys for {ok}/{len(report)} account(s)")
        return report
