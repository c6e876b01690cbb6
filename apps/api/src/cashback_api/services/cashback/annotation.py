"""Cashback annotation embedded in ``Order.metadata_json``."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Mapping

from loguru import logger

from .money import ZERO, normalize_amount, to_decimal


class CashbackOrderState(str, Enum):
    """Per-order cashback state derived from the annotation."""

    NO_CASHBACK = "no_cashback"
    APPLIED = "applied"
    APPLIED_WITH_REVERSALS = "applied_with_reversals"


@dataclass
class CashbackAnnotation:
    """Structured marker recording whether cashback was applied and reversed."""

    METADATA_KEY: ClassVar[str] = "cashback"

    applied: bool = False
    program_id: str | None = None
    percent: str | None = None
    base: str | None = None
    amount: str | None = None
    applied_at: str | None = None
    applied_by: str | None = None
    reversals: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_metadata(cls, metadata: Any) -> "CashbackAnnotation":
        """Parse the annotation from order metadata; malformed input yields an empty one."""

        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                logger.warning("Order metadata is not valid JSON; treating cashback as absent")
                return cls()
        if not isinstance(metadata, Mapping):
            return cls()

        raw = metadata.get(cls.METADATA_KEY)
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("Cashback annotation is not valid JSON; treating as absent")
                return cls()
        if not isinstance(raw, Mapping):
            return cls()

        reversals_raw = raw.get("reversals")
        reversals: dict[str, str] = {}
        if isinstance(reversals_raw, Mapping):
            for key, value in reversals_raw.items():
                reversals[str(key)] = normalize_amount(value)

        return cls(
            applied=raw.get("applied") is True,
            program_id=_optional_str(raw.get("programId")),
            percent=_optional_str(raw.get("percent")),
            base=_optional_str(raw.get("base")),
            amount=_optional_str(raw.get("amount")),
            applied_at=_optional_str(raw.get("appliedAt")),
            applied_by=_optional_str(raw.get("appliedBy")),
            reversals=reversals,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "programId": self.program_id,
            "percent": self.percent,
            "base": self.base,
            "amount": self.amount,
            "appliedAt": self.applied_at,
            "appliedBy": self.applied_by,
            "reversals": dict(self.reversals),
        }

    def merge_into(self, metadata: Any) -> dict[str, Any]:
        """Return a copy of ``metadata`` carrying this annotation; other keys are kept."""

        merged = dict(metadata) if isinstance(metadata, Mapping) else {}
        merged[self.METADATA_KEY] = self.to_dict()
        return merged

    def has_reversal(self, return_request_id: Any) -> bool:
        return str(return_request_id) in self.reversals

    def applied_amount(self) -> Decimal:
        return to_decimal(self.amount)

    def reversed_total(self) -> Decimal:
        return sum((to_decimal(value) for value in self.reversals.values()), ZERO)

    @property
    def state(self) -> CashbackOrderState:
        if not self.applied:
            return CashbackOrderState.NO_CASHBACK
        if self.reversals:
            return CashbackOrderState.APPLIED_WITH_REVERSALS
        return CashbackOrderState.APPLIED


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


__all__ = ["CashbackAnnotation", "CashbackOrderState"]
