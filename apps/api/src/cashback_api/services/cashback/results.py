"""Outcome types returned by cashback operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID


class CashbackSkipReason(str, Enum):
    """Expected conditions under which an operation does nothing."""

    ORDER_NOT_FOUND = "order_not_found"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"
    ALREADY_APPLIED = "already_applied"
    PERCENT_NOT_CONFIGURED = "percent_not_configured"
    CASHBACK_ZERO = "cashback_zero"
    RETURN_OR_ORDER_NOT_FOUND = "return_or_order_not_found"
    REFUND_AMOUNT_MISSING = "refund_amount_missing"
    RETURN_NOT_APPROVED = "return_not_approved"
    NO_CASHBACK_ON_ORDER = "no_cashback_on_order"
    INVALID_CASHBACK_AMOUNT = "invalid_cashback_amount"
    ALREADY_REVERSED = "already_reversed"
    REVERSE_ZERO = "reverse_zero"


@dataclass(slots=True)
class CashbackApplyResult:
    applied: bool
    reason: CashbackSkipReason | None = None
    amount: str | None = None
    program_id: UUID | None = None

    @classmethod
    def skipped(cls, reason: CashbackSkipReason) -> "CashbackApplyResult":
        return cls(applied=False, reason=reason)

    @property
    def outcome(self) -> str:
        return "applied" if self.applied else self.reason.value

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"applied": self.applied}
        if self.reason is not None:
            payload["reason"] = self.reason.value
        if self.amount is not None:
            payload["amount"] = self.amount
        if self.program_id is not None:
            payload["programId"] = str(self.program_id)
        return payload


@dataclass(slots=True)
class CashbackReverseResult:
    reversed: bool
    reason: CashbackSkipReason | None = None
    amount: str | None = None
    ratio: float | None = None

    @classmethod
    def skipped(cls, reason: CashbackSkipReason) -> "CashbackReverseResult":
        return cls(reversed=False, reason=reason)

    @property
    def outcome(self) -> str:
        return "reversed" if self.reversed else self.reason.value

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"reversed": self.reversed}
        if self.reason is not None:
            payload["reason"] = self.reason.value
        if self.amount is not None:
            payload["amount"] = self.amount
        if self.ratio is not None:
            payload["ratio"] = self.ratio
        return payload


__all__ = ["CashbackApplyResult", "CashbackReverseResult", "CashbackSkipReason"]
