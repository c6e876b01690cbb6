"""Per-customer cashback balances with bounded credit and debit."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import Numeric, case, func, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.loyalty import LoyaltyAccount, LoyaltyAccountStatus

from .errors import CashbackIntegrityError
from .money import ZERO, normalize_amount, quantize_amount


class AccountLedger:
    """Applies balance movements to ``LoyaltyAccount`` rows.

    ``credit`` and ``debit`` run inside the caller's transaction and never
    commit. Both are single ``UPDATE`` statements computed by the database, so
    concurrent movements on one account serialize on the row lock instead of
    overwriting each other.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_account(
        self,
        company_id: UUID,
        customer_id: UUID,
        program_id: UUID,
    ) -> LoyaltyAccount | None:
        stmt = (
            select(LoyaltyAccount)
            .where(
                LoyaltyAccount.company_id == company_id,
                LoyaltyAccount.customer_id == customer_id,
                LoyaltyAccount.program_id == program_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(
        self,
        company_id: UUID,
        customer_id: UUID,
        program_id: UUID,
    ) -> LoyaltyAccount:
        """Fetch or create the account for a customer within a program."""

        account = await self.get_account(company_id, customer_id, program_id)
        if account is not None:
            return account

        account = LoyaltyAccount(
            company_id=company_id,
            customer_id=customer_id,
            program_id=program_id,
            current_points=ZERO,
            total_earned=ZERO,
            total_redeemed=ZERO,
            status=LoyaltyAccountStatus.ACTIVE,
            join_date=_utcnow(),
        )
        try:
            async with self._db.begin_nested():
                self._db.add(account)
        except IntegrityError:
            logger.warning(
                "Detected race when creating loyalty account",
                customer_id=str(customer_id),
                program_id=str(program_id),
            )
            existing = await self.get_account(company_id, customer_id, program_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Created loyalty account",
            customer_id=str(customer_id),
            program_id=str(program_id),
            account_id=str(account.id),
        )
        return account

    async def credit(
        self,
        company_id: UUID,
        customer_id: UUID,
        program_id: UUID,
        amount: Decimal,
    ) -> LoyaltyAccount:
        """Increase the balance and lifetime earnings by ``amount``."""

        value = _positive_amount(amount)
        now = _utcnow()
        stmt = (
            update(LoyaltyAccount)
            .where(
                LoyaltyAccount.company_id == company_id,
                LoyaltyAccount.customer_id == customer_id,
                LoyaltyAccount.program_id == program_id,
            )
            .values(
                current_points=func.round(LoyaltyAccount.current_points + _money(value), 2),
                total_earned=func.round(LoyaltyAccount.total_earned + _money(value), 2),
                last_points_earned=value,
                last_activity=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self._apply(stmt, customer_id=customer_id, program_id=program_id)
        account = await self._reload(company_id, customer_id, program_id)
        logger.info(
            "Credited loyalty account",
            account_id=str(account.id),
            amount=normalize_amount(value),
            balance=normalize_amount(account.current_points),
        )
        return account

    async def debit(
        self,
        company_id: UUID,
        customer_id: UUID,
        program_id: UUID,
        amount: Decimal,
    ) -> LoyaltyAccount:
        """Decrease the balance and lifetime earnings by ``amount``, floored at zero.

        Each column is reduced by ``min(column, amount)`` on its own, so a
        balance already lowered by redemptions clamps earlier than the
        lifetime total does.
        """

        value = _positive_amount(amount)
        now = _utcnow()
        stmt = (
            update(LoyaltyAccount)
            .where(
                LoyaltyAccount.company_id == company_id,
                LoyaltyAccount.customer_id == customer_id,
                LoyaltyAccount.program_id == program_id,
            )
            .values(
                current_points=_floored_subtract(LoyaltyAccount.current_points, value),
                total_earned=_floored_subtract(LoyaltyAccount.total_earned, value),
                last_activity=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self._apply(stmt, customer_id=customer_id, program_id=program_id)
        account = await self._reload(company_id, customer_id, program_id)
        logger.info(
            "Debited loyalty account",
            account_id=str(account.id),
            amount=normalize_amount(value),
            balance=normalize_amount(account.current_points),
        )
        return account

    async def _apply(self, stmt, *, customer_id: UUID, program_id: UUID) -> None:
        result = await self._db.execute(stmt)
        if result.rowcount == 0:
            raise CashbackIntegrityError(
                f"Loyalty account for customer {customer_id} in program {program_id} does not exist"
            )

    async def _reload(self, company_id: UUID, customer_id: UUID, program_id: UUID) -> LoyaltyAccount:
        account = await self.get_account(company_id, customer_id, program_id)
        if account is None:
            raise CashbackIntegrityError(
                f"Loyalty account for customer {customer_id} in program {program_id} vanished mid-transaction"
            )
        return account


def _money(value: Decimal):
    return literal(value, Numeric(14, 2))


def _floored_subtract(column, value: Decimal):
    deduction = case((column < _money(value), column), else_=_money(value))
    return func.round(column - deduction, 2)


def _positive_amount(amount: Decimal) -> Decimal:
    value = quantize_amount(amount)
    if value <= ZERO:
        raise ValueError("Loyalty balance movements require a positive amount")
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["AccountLedger"]
