import io
import json
import sys
from decimal import Decimal
from uuid import uuid4

import pytest
from loguru import logger

from cashback_api.core.logging import configure_logging
from cashback_api.models.order import Order, PaymentStatusEnum
from cashback_api.observability.cashback import CashbackObservabilityStore
from cashback_api.services.cashback import CashbackService, ProgramRegistry


def test_store_snapshot_and_reset() -> None:
    store = CashbackObservabilityStore()
    store.record_apply("applied")
    store.record_apply("applied")
    store.record_reverse("already_reversed")
    store.record_amount("credited", Decimal("50"))
    store.record_amount("credited", Decimal("2.5"))

    snapshot = store.snapshot().as_dict()
    assert snapshot["applies"] == {"applied": 2}
    assert snapshot["reversals"] == {"already_reversed": 1}
    assert snapshot["amounts"] == {"credited": "52.50"}

    store.reset()
    assert store.snapshot().applies == {}


@pytest.mark.asyncio
async def test_service_records_outcomes(session_factory) -> None:
    store = CashbackObservabilityStore()
    company_id = uuid4()

    async with session_factory() as session:
        registry = ProgramRegistry(session)
        program = await registry.ensure_program(company_id)
        await registry.update_rules(program, percent="5")
        order = Order(
            company_id=company_id,
            customer_id=uuid4(),
            payment_status=PaymentStatusEnum.COMPLETED,
            subtotal=Decimal("200.00"),
            total=Decimal("200.00"),
            metadata_json={},
        )
        session.add(order)
        await session.commit()

        service = CashbackService(session, store=store)
        await service.apply_cashback_for_paid_order(order_id=order.id, company_id=company_id)
        await service.apply_cashback_for_paid_order(order_id=order.id, company_id=company_id)
        await service.reverse_cashback_for_return(return_request_id=uuid4(), company_id=company_id)

    snapshot = store.snapshot()
    assert snapshot.applies == {"applied": 1, "already_applied": 1}
    assert snapshot.reversals == {"return_or_order_not_found": 1}
    assert snapshot.amounts == {"credited": Decimal("10.00")}


def test_configure_logging_emits_json_lines() -> None:
    buffer = io.StringIO()
    configure_logging(service_name="cashback-ledger", environment="test", version="0.1.0", stream=buffer)
    try:
        logger.bind(order_id="abc").info("Applied cashback for paid order")
    finally:
        logger.remove()
        logger.add(sys.stderr)

    payload = json.loads(buffer.getvalue().strip().splitlines()[-1])
    assert payload["message"] == "Applied cashback for paid order"
    assert payload["service"] == "cashback-ledger"
    assert payload["environment"] == "test"
    assert payload["level"] == "info"
    assert payload["order_id"] == "abc"
