"""Find-or-create registry for company cashback programs."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.models.loyalty import (
    CashbackBase,
    CashbackProgram,
    CashbackTrigger,
    LoyaltyProgramStatus,
    LoyaltyProgramType,
)

from .money import ZERO, format_percent, to_decimal


@dataclass(frozen=True)
class CashbackRuleSet:
    """Parsed cashback rules of a program."""

    percent: Decimal
    base: CashbackBase
    trigger: CashbackTrigger

    @classmethod
    def from_rules(cls, raw: Any) -> "CashbackRuleSet":
        """Parse stored rules; anything malformed degrades to a disabled program."""

        if not isinstance(raw, Mapping):
            return cls.disabled()

        percent = to_decimal(raw.get("percent"))
        if percent < ZERO:
            percent = ZERO

        try:
            base = CashbackBase(str(raw.get("base") or CashbackBase.TOTAL.value).lower())
        except ValueError:
            logger.warning("Unsupported cashback base; falling back to total", base=raw.get("base"))
            base = CashbackBase.TOTAL

        try:
            trigger = CashbackTrigger(
                str(raw.get("trigger") or CashbackTrigger.PAYMENT_COMPLETED.value).lower()
            )
        except ValueError:
            logger.warning("Unsupported cashback trigger; disabling program", trigger=raw.get("trigger"))
            return cls.disabled()

        return cls(percent=percent, base=base, trigger=trigger)

    @classmethod
    def disabled(cls) -> "CashbackRuleSet":
        return cls(percent=ZERO, base=CashbackBase.TOTAL, trigger=CashbackTrigger.PAYMENT_COMPLETED)

    @classmethod
    def defaults(cls) -> "CashbackRuleSet":
        return cls.from_rules(
            {
                "percent": settings.cashback_default_percent,
                "base": settings.cashback_default_base,
                "trigger": CashbackTrigger.PAYMENT_COMPLETED.value,
            }
        )

    @property
    def enabled(self) -> bool:
        return self.percent > ZERO

    def as_rules(self) -> dict[str, Any]:
        return {
            "percent": format_percent(self.percent),
            "base": self.base.value,
            "trigger": self.trigger.value,
        }


class ProgramRegistry:
    """Resolves the single cashback program of a company."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def find_program(self, company_id: UUID) -> CashbackProgram | None:
        """Return the oldest cashback program for a company."""

        stmt = (
            select(CashbackProgram)
            .where(
                CashbackProgram.company_id == company_id,
                CashbackProgram.program_type == LoyaltyProgramType.CASHBACK,
            )
            .order_by(CashbackProgram.created_at.asc(), CashbackProgram.id.asc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_program(self, program_id: UUID, company_id: UUID) -> CashbackProgram | None:
        stmt = select(CashbackProgram).where(
            CashbackProgram.id == program_id,
            CashbackProgram.company_id == company_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_program(self, company_id: UUID, *, created_by: str | None = None) -> CashbackProgram:
        """Fetch or create the cashback program for a company.

        New programs use the configured defaults, which leave cashback disabled
        (percent 0) unless overridden. Concurrent first calls are resolved by
        the ``(company_id, program_type)`` unique constraint: the loser re-reads
        the winner's row.
        """

        program = await self.find_program(company_id)
        if program is not None:
            return program

        program = CashbackProgram(
            company_id=company_id,
            program_type=LoyaltyProgramType.CASHBACK,
            status=LoyaltyProgramStatus.ACTIVE,
            rules=CashbackRuleSet.defaults().as_rules(),
            created_by=created_by,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(program)
        except IntegrityError:
            logger.warning("Detected race when creating cashback program", company_id=str(company_id))
            existing = await self.find_program(company_id)
            if existing is None:
                raise
            return existing

        await self._db.commit()
        await self._db.refresh(program)
        logger.info(
            "Created cashback program",
            company_id=str(company_id),
            program_id=str(program.id),
            created_by=created_by,
        )
        return program

    async def update_rules(
        self,
        program: CashbackProgram,
        *,
        percent: Decimal | float | str,
        base: CashbackBase | str = CashbackBase.TOTAL,
    ) -> CashbackProgram:
        """Replace a program's rules; used by configuration tooling and fixtures."""

        rule_set = CashbackRuleSet.from_rules(
            {"percent": percent, "base": base.value if isinstance(base, CashbackBase) else base}
        )
        program.rules = rule_set.as_rules()
        await self._db.flush()
        logger.info(
            "Updated cashback program rules",
            program_id=str(program.id),
            percent=rule_set.as_rules()["percent"],
            base=rule_set.base.value,
        )
        return program


__all__ = ["CashbackRuleSet", "ProgramRegistry"]
