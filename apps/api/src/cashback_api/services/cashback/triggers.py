"""Hooks wiring order and return status changes to cashback operations.

Callers invoke these after committing the status change itself. Cashback is a
side effect of the transition: failures are logged for operators and never
propagate back into the status update that triggered them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.order import PaymentStatusEnum, ReturnRequestStatusEnum

from .cashback_service import REVERSIBLE_RETURN_STATUSES, CashbackService
from .results import CashbackApplyResult, CashbackReverseResult

_E = TypeVar("_E", bound=Enum)


async def handle_payment_status_change(
    session: AsyncSession,
    *,
    order_id: UUID | str,
    company_id: UUID | str,
    previous_status: PaymentStatusEnum | str | None,
    new_status: PaymentStatusEnum | str | None,
    changed_by: str | None = None,
    service: CashbackService | None = None,
) -> CashbackApplyResult | None:
    """Apply cashback when an order's payment moves into ``completed``."""

    previous = _coerce_status(PaymentStatusEnum, previous_status)
    current = _coerce_status(PaymentStatusEnum, new_status)
    if current != PaymentStatusEnum.COMPLETED or previous == current:
        return None

    cashback = service or CashbackService(session)
    try:
        result = await cashback.apply_cashback_for_paid_order(
            order_id=order_id,
            company_id=company_id,
            changed_by=changed_by,
        )
    except Exception:
        logger.exception(
            "Failed to apply cashback for paid order",
            order_id=str(order_id),
            company_id=str(company_id),
        )
        await _rollback_quietly(session)
        return None

    logger.bind(order_id=str(order_id), **result.as_dict()).debug("Payment completion cashback hook finished")
    return result


async def handle_return_status_change(
    session: AsyncSession,
    *,
    return_request_id: UUID | str,
    company_id: UUID | str,
    previous_status: ReturnRequestStatusEnum | str | None,
    new_status: ReturnRequestStatusEnum | str | None,
    changed_by: str | None = None,
    service: CashbackService | None = None,
) -> CashbackReverseResult | None:
    """Reverse cashback when a return request becomes approved or completed."""

    previous = _coerce_status(ReturnRequestStatusEnum, previous_status)
    current = _coerce_status(ReturnRequestStatusEnum, new_status)
    if current not in REVERSIBLE_RETURN_STATUSES or previous == current:
        return None

    cashback = service or CashbackService(session)
    try:
        result = await cashback.reverse_cashback_for_return(
            return_request_id=return_request_id,
            company_id=company_id,
            changed_by=changed_by,
        )
    except Exception:
        logger.exception(
            "Failed to reverse cashback for return",
            return_request_id=str(return_request_id),
            company_id=str(company_id),
        )
        await _rollback_quietly(session)
        return None

    logger.bind(return_request_id=str(return_request_id), **result.as_dict()).debug(
        "Return approval cashback hook finished"
    )
    return result


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception:
        logger.exception("Failed to roll back session after cashback hook failure")


def _coerce_status(enum_cls: type[_E], value: Any) -> _E | None:
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        logger.warning("Ignoring unknown status value", status=value, enum=enum_cls.__name__)
        return None


__all__ = ["handle_payment_status_change", "handle_return_status_change"]
