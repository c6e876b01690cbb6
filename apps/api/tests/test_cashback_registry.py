import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from cashback_api.core.settings import settings
from cashback_api.models.loyalty import CashbackBase, CashbackProgram, CashbackTrigger
from cashback_api.services.cashback import CashbackRuleSet, ProgramRegistry


def test_rule_set_parses_and_degrades() -> None:
    rules = CashbackRuleSet.from_rules({"percent": "2.5", "base": "SUBTOTAL"})
    assert rules.percent == Decimal("2.5")
    assert rules.base == CashbackBase.SUBTOTAL
    assert rules.trigger == CashbackTrigger.PAYMENT_COMPLETED
    assert rules.enabled

    assert not CashbackRuleSet.from_rules(None).enabled
    assert not CashbackRuleSet.from_rules({"percent": -3}).enabled
    assert not CashbackRuleSet.from_rules({"percent": 5, "trigger": "shipped"}).enabled
    assert CashbackRuleSet.from_rules({"percent": 5, "base": "gross"}).base == CashbackBase.TOTAL
    assert CashbackRuleSet.from_rules({"percent": 5}).as_rules() == {
        "percent": "5",
        "base": "total",
        "trigger": "payment_completed",
    }


@pytest.mark.asyncio
async def test_ensure_program_creates_disabled_program_once(session_factory) -> None:
    company_id = uuid4()

    async with session_factory() as session:
        registry = ProgramRegistry(session)
        first = await registry.ensure_program(company_id, created_by="ops@example.com")
        second = await registry.ensure_program(company_id)

        assert first.id == second.id
        assert first.created_by == "ops@example.com"
        assert first.rules["percent"] == "0"
        assert not CashbackRuleSet.from_rules(first.rules).enabled

        count = await session.scalar(
            select(func.count()).select_from(CashbackProgram).where(CashbackProgram.company_id == company_id)
        )
        assert count == 1


@pytest.mark.asyncio
async def test_ensure_program_uses_configured_defaults(session_factory, monkeypatch) -> None:
    monkeypatch.setattr(settings, "cashback_default_percent", 3.0)
    monkeypatch.setattr(settings, "cashback_default_base", "subtotal")

    async with session_factory() as session:
        program = await ProgramRegistry(session).ensure_program(uuid4())

    assert program.rules == {"percent": "3", "base": "subtotal", "trigger": "payment_completed"}


@pytest.mark.asyncio
async def test_programs_are_company_scoped(session_factory) -> None:
    company_a = uuid4()
    company_b = uuid4()

    async with session_factory() as session:
        registry = ProgramRegistry(session)
        program_a = await registry.ensure_program(company_a)
        program_b = await registry.ensure_program(company_b)

        assert program_a.id != program_b.id
        assert await registry.get_program(program_a.id, company_b) is None
        assert (await registry.get_program(program_a.id, company_a)).id == program_a.id

        await registry.update_rules(program_a, percent="7.5", base=CashbackBase.SUBTOTAL)
        await session.commit()

        refreshed = await registry.find_program(company_a)
        assert refreshed.rules == {"percent": "7.5", "base": "subtotal", "trigger": "payment_completed"}


@pytest.mark.asyncio
async def test_concurrent_first_calls_share_one_program(file_session_factory) -> None:
    company_id = uuid4()

    async def _ensure():
        async with file_session_factory() as session:
            program = await ProgramRegistry(session).ensure_program(company_id)
            return program.id

    program_ids = await asyncio.gather(*(_ensure() for _ in range(4)))

    assert len(set(program_ids)) == 1
    async with file_session_factory() as session:
        count = await session.scalar(
            select(func.count()).select_from(CashbackProgram).where(CashbackProgram.company_id == company_id)
        )
        assert count == 1
