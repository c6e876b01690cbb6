"""Tests for the cashback backfill sweep."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from cashback_api.jobs.cashback import run_cashback_backfill
from cashback_api.models.loyalty import CashbackLedgerEntry
from cashback_api.models.order import Order, PaymentStatusEnum
from cashback_api.services.cashback import CashbackService, ProgramRegistry


def _order(company_id, *, status=PaymentStatusEnum.COMPLETED, total="100.00") -> Order:
    return Order(
        company_id=company_id,
        customer_id=uuid4(),
        payment_status=status,
        subtotal=Decimal(total),
        total=Decimal(total),
        metadata_json={},
    )


@pytest.mark.asyncio
async def test_backfill_credits_missed_orders_once(session_factory) -> None:
    company_id = uuid4()
    disabled_company_id = uuid4()

    async with session_factory() as session:
        registry = ProgramRegistry(session)
        program = await registry.ensure_program(company_id)
        await registry.update_rules(program, percent="10")

        credited = _order(company_id)
        missed = _order(company_id, total="40.00")
        pending = _order(company_id, status=PaymentStatusEnum.PENDING)
        elsewhere = _order(disabled_company_id)
        session.add_all([credited, missed, pending, elsewhere])
        await session.commit()

        await CashbackService(session).apply_cashback_for_paid_order(
            order_id=credited.id,
            company_id=company_id,
        )
        missed_id = missed.id

    summary = await run_cashback_backfill(session_factory=session_factory)

    assert summary["scanned"] == 2
    assert summary["applied"] == 1
    assert summary["skipped"] == 1
    assert summary["failed"] == 0
    assert summary["reasons"] == {"percent_not_configured": 1}

    async with session_factory() as session:
        entry = (
            await session.execute(select(CashbackLedgerEntry).where(CashbackLedgerEntry.order_id == missed_id))
        ).scalar_one()
        assert Decimal(entry.amount) == Decimal("4.00")
        assert entry.changed_by == "system:cashback-backfill"

    rerun = await run_cashback_backfill(session_factory=session_factory, company_ids=[company_id])
    assert rerun["scanned"] == 0
    assert rerun["applied"] == 0


@pytest.mark.asyncio
async def test_backfill_respects_company_scope_and_limit(session_factory) -> None:
    company_id = uuid4()
    other_company_id = uuid4()

    async with session_factory() as session:
        for target in (company_id, other_company_id):
            registry = ProgramRegistry(session)
            program = await registry.ensure_program(target)
            await registry.update_rules(program, percent="5")
        session.add_all([_order(company_id), _order(company_id), _order(other_company_id)])
        await session.commit()

    summary = await run_cashback_backfill(
        session_factory=session_factory,
        company_ids=[company_id],
        limit=1,
    )
    assert summary["scanned"] == 1
    assert summary["applied"] == 1

    remaining = await run_cashback_backfill(session_factory=session_factory, company_ids=[company_id])
    assert remaining["applied"] == 1

    async with session_factory() as session:
        entries = (await session.execute(select(CashbackLedgerEntry))).scalars().all()
        assert {entry.company_id for entry in entries} == {company_id}
