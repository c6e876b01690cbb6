"""Job that applies cashback to paid orders the lifecycle hook missed."""

# meta: job: cashback-backfill

from __future__ import annotations

from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.models.loyalty import CashbackLedgerEntry, CashbackLedgerEntryType
from cashback_api.models.order import Order, PaymentStatusEnum
from cashback_api.services.cashback import CashbackError, CashbackService

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_cashback_backfill(
    *,
    session_factory: SessionFactory,
    company_ids: Sequence[UUID] | None = None,
    limit: int | None = None,
    changed_by: str = "system:cashback-backfill",
) -> Dict[str, Any]:
    """Apply cashback to every paid order in scope; already credited orders are skipped."""

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    batch_size = limit or settings.cashback_backfill_batch_size

    async with session as managed_session:
        candidates = await _fetch_paid_orders(managed_session, company_ids=company_ids, limit=batch_size)
        service = CashbackService(managed_session)

        reasons: Counter[str] = Counter()
        applied = 0
        failed = 0
        for order_id, company_id in candidates:
            try:
                result = await service.apply_cashback_for_paid_order(
                    order_id=order_id,
                    company_id=company_id,
                    changed_by=changed_by,
                )
            except (SQLAlchemyError, CashbackError):
                failed += 1
                logger.exception(
                    "Cashback backfill failed for order",
                    order_id=str(order_id),
                    company_id=str(company_id),
                )
                continue

            if result.applied:
                applied += 1
            else:
                reasons[result.reason.value] += 1

        summary = {
            "scanned": len(candidates),
            "applied": applied,
            "skipped": sum(reasons.values()),
            "failed": failed,
            "reasons": dict(reasons),
        }
        logger.bind(summary=summary).info("Cashback backfill sweep completed")
        return summary


async def _fetch_paid_orders(
    session: AsyncSession,
    *,
    company_ids: Sequence[UUID] | None,
    limit: int,
) -> list[tuple[UUID, UUID]]:
    credited = select(CashbackLedgerEntry.id).where(
        CashbackLedgerEntry.order_id == Order.id,
        CashbackLedgerEntry.entry_type == CashbackLedgerEntryType.CREDIT,
    )
    stmt = select(Order.id, Order.company_id).where(
        Order.payment_status == PaymentStatusEnum.COMPLETED,
        ~credited.exists(),
    )
    if company_ids:
        stmt = stmt.where(Order.company_id.in_(list(company_ids)))
    stmt = stmt.order_by(Order.created_at.asc(), Order.id.asc()).limit(limit)
    result = await session.execute(stmt)
    return [(row.id, row.company_id) for row in result.all()]


__all__ = ["run_cashback_backfill"]
