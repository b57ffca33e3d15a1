# healthwatch/ledger.py
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from healthwatch.models import TrackedAccount, normalize_address


class AccountLedger:
    """Tracked accounts keyed by address, iterated in insertion order.

    The only mutable state shared between the ingester and the scheduler.
    ``version`` increases on every effective mutation so callers can tell
    whether a checkpoint is stale.
    """

    def __init__(self, accounts: Iterable[TrackedAccount] = ()):
        self._accounts: Dict[str, TrackedAccount] = {}
        self.version = 0
        for account in accounts:
            self.add(account)

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, address) -> bool:
        try:
            return normalize_address(address) in self._accounts
        except ValueError:
            return False

    def is_empty(self) -> bool:
        return not self._accounts

    def get(self, address: str) -> Optional[TrackedAccount]:
        return self._accounts.get(normalize_address(address))

    def add(self, account: TrackedAccount) -> bool:
        key = normalize_address(account.address)
        if key in self._accounts:
            return False
        self._accounts[key] = replace(account, address=key)
        self.version += 1
        return True

    def remove(self, address: str) -> bool:
        if self._accounts.pop(normalize_address(address), None) is None:
            return False
        self.version += 1
        return True

    def set_alerted(self, address: str, alerted: bool):
        key = normalize_address(address)
        current = self._accounts[key]
        if current.alerted != alerted:
            self._accounts[key] = replace(current, alerted=alerted)
            self.version += 1

    def snapshot(self) -> List[TrackedAccount]:
        return list(self._accounts.values())

    def reset(self):
        if self._accounts:
            self._accounts.clear()
            self.version += 1

    # checkpoint format: [{"address": "0x..", "alerted": false}, ...]
    def to_records(self) -> List[dict]:
        return [{"address": a.address, "alerted": a.alerted} for a in self._accounts.values()]

    def restore(self, records: Iterable[dict]) -> int:
        self.reset()
        for rec in records:
            self.add(TrackedAccount(rec["address"], bool(rec.get("alerted", False))))
        return len(self._accounts)
