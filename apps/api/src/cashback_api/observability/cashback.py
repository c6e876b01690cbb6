from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Dict


@dataclass
class CashbackSnapshot:
    applies: Dict[str, int]
    reversals: Dict[str, int]
    amounts: Dict[str, Decimal]

    def as_dict(self) -> Dict[str, object]:
        return {
            "applies": dict(self.applies),
            "reversals": dict(self.reversals),
            "amounts": {key: f"{value:.2f}" for key, value in self.amounts.items()},
        }


class CashbackObservabilityStore:
    """Count cashback outcomes and moved amounts for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._applies: Dict[str, int] = defaultdict(int)
        self._reversals: Dict[str, int] = defaultdict(int)
        self._amounts: Dict[str, Decimal] = defaultdict(Decimal)

    def record_apply(self, outcome: str) -> None:
        with self._lock:
            self._applies[outcome] += 1

    def record_reverse(self, outcome: str) -> None:
        with self._lock:
            self._reversals[outcome] += 1

    def record_amount(self, kind: str, amount: Decimal) -> None:
        with self._lock:
            self._amounts[kind] += Decimal(amount)

    def snapshot(self) -> CashbackSnapshot:
        with self._lock:
            return CashbackSnapshot(
                applies=dict(self._applies),
                reversals=dict(self._reversals),
                amounts=dict(self._amounts),
            )

    def reset(self) -> None:
        with self._lock:
            self._applies.clear()
            self._reversals.clear()
            self._amounts.clear()


_STORE = CashbackObservabilityStore()


def get_cashback_store() -> CashbackObservabilityStore:
    return _STORE


__all__ = ["get_cashback_store", "CashbackObservabilityStore", "CashbackSnapshot"]
