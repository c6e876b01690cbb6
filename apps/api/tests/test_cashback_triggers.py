from decimal import Decimal
from uuid import uuid4

import pytest
from loguru import logger
from sqlalchemy.exc import OperationalError

from cashback_api.models.order import Order, PaymentStatusEnum, ReturnRequest, ReturnRequestStatusEnum
from cashback_api.services.cashback import (
    CashbackError,
    CashbackService,
    CashbackSkipReason,
    ProgramRegistry,
    handle_payment_status_change,
    handle_return_status_change,
)


async def _paid_order(session, company_id) -> Order:
    registry = ProgramRegistry(session)
    program = await registry.ensure_program(company_id)
    await registry.update_rules(program, percent="5")
    order = Order(
        company_id=company_id,
        customer_id=uuid4(),
        payment_status=PaymentStatusEnum.COMPLETED,
        subtotal=Decimal("1000.00"),
        total=Decimal("1000.00"),
        metadata_json={},
    )
    session.add(order)
    await session.commit()
    return order


class _ExplodingService:
    async def apply_cashback_for_paid_order(self, **_: object):
        raise CashbackError("ledger unavailable")

    async def reverse_cashback_for_return(self, **_: object):
        raise CashbackError("ledger unavailable")


@pytest.mark.asyncio
async def test_payment_hook_only_fires_on_transition_to_completed(session_factory) -> None:
    company_id = uuid4()

    async with session_factory() as session:
        order = await _paid_order(session, company_id)

        unchanged = await handle_payment_status_change(
            session,
            order_id=order.id,
            company_id=company_id,
            previous_status=PaymentStatusEnum.COMPLETED,
            new_status=PaymentStatusEnum.COMPLETED,
        )
        failed = await handle_payment_status_change(
            session,
            order_id=order.id,
            company_id=company_id,
            previous_status="pending",
            new_status="failed",
        )
        assert unchanged is None
        assert failed is None

        result = await handle_payment_status_change(
            session,
            order_id=order.id,
            company_id=company_id,
            previous_status="pending",
            new_status="COMPLETED",
            changed_by="webhook:stripe",
        )

    assert result is not None
    assert result.applied is True
    assert result.amount == "50.00"


@pytest.mark.asyncio
async def test_return_hook_reverses_on_approval(session_factory) -> None:
    company_id = uuid4()

    async with session_factory() as session:
        order = await _paid_order(session, company_id)
        await CashbackService(session).apply_cashback_for_paid_order(order_id=order.id, company_id=company_id)

        return_request = ReturnRequest(
            company_id=company_id,
            order_id=order.id,
            refund_amount=Decimal("250.00"),
            status=ReturnRequestStatusEnum.APPROVED,
        )
        session.add(return_request)
        await session.commit()

        rejected = await handle_return_status_change(
            session,
            return_request_id=return_request.id,
            company_id=company_id,
            previous_status=ReturnRequestStatusEnum.PENDING,
            new_status=ReturnRequestStatusEnum.REJECTED,
        )
        assert rejected is None

        approved = await handle_return_status_change(
            session,
            return_request_id=return_request.id,
            company_id=company_id,
            previous_status=ReturnRequestStatusEnum.PENDING,
            new_status=ReturnRequestStatusEnum.APPROVED,
        )
        completed = await handle_return_status_change(
            session,
            return_request_id=return_request.id,
            company_id=company_id,
            previous_status=ReturnRequestStatusEnum.APPROVED,
            new_status=ReturnRequestStatusEnum.COMPLETED,
        )

    assert approved.reversed is True
    assert approved.amount == "12.50"
    assert completed.reversed is False
    assert completed.reason == CashbackSkipReason.ALREADY_REVERSED


@pytest.mark.asyncio
async def test_hook_failures_do_not_propagate(session_factory) -> None:
    async with session_factory() as session:
        applied = await handle_payment_status_change(
            session,
            order_id=uuid4(),
            company_id=uuid4(),
            previous_status=None,
            new_status=PaymentStatusEnum.COMPLETED,
            service=_ExplodingService(),
        )
        reversed_ = await handle_return_status_change(
            session,
            return_request_id=uuid4(),
            company_id=uuid4(),
            previous_status=None,
            new_status="approved",
            service=_ExplodingService(),
        )

    assert applied is None
    assert reversed_ is None


class _DisconnectedSession:
    async def rollback(self) -> None:
        raise OperationalError("ROLLBACK", {}, Exception("connection dropped"))


@pytest.mark.asyncio
async def test_hook_logs_failure_even_when_rollback_fails() -> None:
    messages: list[str] = []
    sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="ERROR")
    try:
        applied = await handle_payment_status_change(
            _DisconnectedSession(),
            order_id=uuid4(),
            company_id=uuid4(),
            previous_status="pending",
            new_status="completed",
            service=_ExplodingService(),
        )
        reversed_ = await handle_return_status_change(
            _DisconnectedSession(),
            return_request_id=uuid4(),
            company_id=uuid4(),
            previous_status="pending",
            new_status="completed",
            service=_ExplodingService(),
        )
    finally:
        logger.remove(sink_id)

    assert applied is None
    assert reversed_ is None
    assert "Failed to apply cashback for paid order" in messages
    assert "Failed to reverse cashback for return" in messages
