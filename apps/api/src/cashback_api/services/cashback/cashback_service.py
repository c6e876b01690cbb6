"""Service layer crediting cashback on paid orders and reversing it on returns."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from loguru import logger
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.models.loyalty import (
    CashbackBase,
    CashbackLedgerEntry,
    CashbackLedgerEntryType,
    CashbackProgram,
    LoyaltyProgramStatus,
)
from cashback_api.models.order import (
    Order,
    PaymentStatusEnum,
    ReturnRequest,
    ReturnRequestStatusEnum,
)
from cashback_api.observability.cashback import CashbackObservabilityStore, get_cashback_store

from .annotation import CashbackAnnotation
from .ledger import AccountLedger
from .money import ZERO, format_percent, normalize_amount, quantize_amount, to_decimal
from .registry import CashbackRuleSet, ProgramRegistry
from .results import CashbackApplyResult, CashbackReverseResult, CashbackSkipReason

_tracer = trace.get_tracer(__name__)

MIN_ORDER_TOTAL = Decimal("0.01")
RATIO_QUANTUM = Decimal("0.000001")
REVERSIBLE_RETURN_STATUSES = frozenset(
    {ReturnRequestStatusEnum.APPROVED, ReturnRequestStatusEnum.COMPLETED}
)


def credit_dedupe_key(order_id: UUID) -> str:
    return f"credit:{order_id}"


def reversal_dedupe_key(order_id: UUID, return_request_id: UUID) -> str:
    return f"reversal:{order_id}:{return_request_id}"


def reversal_ratio(refund_amount: Any, order_total: Any) -> Decimal:
    """Share of the order being refunded, clamped to ``[0, 1]``."""

    denominator = max(to_decimal(order_total), MIN_ORDER_TOTAL)
    ratio = to_decimal(refund_amount) / denominator
    return min(max(ratio, ZERO), Decimal("1"))


class CashbackService:
    """Coordinates cashback credits and reversals against loyalty accounts.

    Each operation checks its preconditions on a plain read, then claims the
    triggering event by inserting a uniquely keyed ``CashbackLedgerEntry``.
    The claim, the balance movement and the order annotation rewrite commit
    together; a lost claim race rolls everything back and reports the
    already-processed outcome.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        registry: ProgramRegistry | None = None,
        ledger: AccountLedger | None = None,
        store: CashbackObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._registry = registry or ProgramRegistry(db_session)
        self._ledger = ledger or AccountLedger(db_session)
        self._store = store or get_cashback_store()

    async def apply_cashback_for_paid_order(
        self,
        *,
        order_id: UUID | str,
        company_id: UUID | str,
        changed_by: str | None = None,
    ) -> CashbackApplyResult:
        """Credit cashback for an order whose payment completed, at most once."""

        with _tracer.start_as_current_span("cashback.apply") as span:
            span.set_attribute("cashback.order_id", str(order_id))
            span.set_attribute("cashback.company_id", str(company_id))
            try:
                result = await self._apply(order_id, company_id, _actor(changed_by))
            except Exception:
                self._store.record_apply("error")
                await self._db.rollback()
                raise

            span.set_attribute("cashback.outcome", result.outcome)
            self._store.record_apply(result.outcome)
            if result.applied:
                self._store.record_amount("credited", to_decimal(result.amount))
            else:
                logger.debug(
                    "Cashback apply skipped",
                    order_id=str(order_id),
                    company_id=str(company_id),
                    reason=result.reason.value,
                )
            return result

    async def reverse_cashback_for_return(
        self,
        *,
        return_request_id: UUID | str,
        company_id: UUID | str,
        changed_by: str | None = None,
    ) -> CashbackReverseResult:
        """Claw back the refunded share of an order's cashback, once per return."""

        with _tracer.start_as_current_span("cashback.reverse") as span:
            span.set_attribute("cashback.return_request_id", str(return_request_id))
            span.set_attribute("cashback.company_id", str(company_id))
            try:
                result = await self._reverse(return_request_id, company_id, _actor(changed_by))
            except Exception:
                self._store.record_reverse("error")
                await self._db.rollback()
                raise

            span.set_attribute("cashback.outcome", result.outcome)
            self._store.record_reverse(result.outcome)
            if result.reversed:
                self._store.record_amount("reversed", to_decimal(result.amount))
            else:
                logger.debug(
                    "Cashback reversal skipped",
                    return_request_id=str(return_request_id),
                    company_id=str(company_id),
                    reason=result.reason.value,
                )
            return result

    async def list_ledger_entries(
        self,
        company_id: UUID,
        *,
        order_id: UUID | None = None,
        customer_id: UUID | None = None,
        limit: int = 50,
    ) -> list[CashbackLedgerEntry]:
        """Return ledger entries for a company, newest first."""

        stmt = select(CashbackLedgerEntry).where(CashbackLedgerEntry.company_id == company_id)
        if order_id is not None:
            stmt = stmt.where(CashbackLedgerEntry.order_id == order_id)
        if customer_id is not None:
            stmt = stmt.where(CashbackLedgerEntry.customer_id == customer_id)
        stmt = stmt.order_by(CashbackLedgerEntry.created_at.desc()).limit(limit)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def _apply(
        self,
        order_id: UUID | str,
        company_id: UUID | str,
        changed_by: str | None,
    ) -> CashbackApplyResult:
        order_uuid = _coerce_uuid(order_id)
        company_uuid = _coerce_uuid(company_id)
        if order_uuid is None or company_uuid is None:
            return CashbackApplyResult.skipped(CashbackSkipReason.ORDER_NOT_FOUND)

        order = await self._get_order(order_uuid, company_uuid)
        if order is None:
            return CashbackApplyResult.skipped(CashbackSkipReason.ORDER_NOT_FOUND)
        if order.payment_status != PaymentStatusEnum.COMPLETED:
            return CashbackApplyResult.skipped(CashbackSkipReason.PAYMENT_NOT_COMPLETED)
        if CashbackAnnotation.from_metadata(order.metadata_json).applied:
            return CashbackApplyResult.skipped(CashbackSkipReason.ALREADY_APPLIED)

        # Captured before the registry may commit and expire the instance.
        customer_id = order.customer_id
        subtotal = to_decimal(order.subtotal)
        total = to_decimal(order.total)

        program = await self._registry.ensure_program(company_uuid, created_by=changed_by)
        rule_set = _effective_rules(program)
        if not rule_set.enabled:
            return CashbackApplyResult.skipped(CashbackSkipReason.PERCENT_NOT_CONFIGURED)

        base_amount = subtotal if rule_set.base == CashbackBase.SUBTOTAL else total
        amount = quantize_amount(base_amount * rule_set.percent / Decimal("100"))
        if amount <= ZERO:
            return CashbackApplyResult.skipped(CashbackSkipReason.CASHBACK_ZERO)

        program_id = program.id
        entry = CashbackLedgerEntry(
            company_id=company_uuid,
            program_id=program_id,
            customer_id=customer_id,
            order_id=order_uuid,
            entry_type=CashbackLedgerEntryType.CREDIT,
            amount=amount,
            requested_amount=amount,
            dedupe_key=credit_dedupe_key(order_uuid),
            changed_by=changed_by,
            metadata_json={
                "percent": format_percent(rule_set.percent),
                "base": rule_set.base.value,
                "baseAmount": normalize_amount(base_amount),
            },
        )
        if not await self._claim(entry):
            return CashbackApplyResult.skipped(CashbackSkipReason.ALREADY_APPLIED)

        locked = await self._lock_order(order_uuid, company_uuid)
        if locked is None:
            await self._db.rollback()
            return CashbackApplyResult.skipped(CashbackSkipReason.ORDER_NOT_FOUND)
        if CashbackAnnotation.from_metadata(locked.metadata_json).applied:
            await self._db.rollback()
            logger.warning(
                "Order already carries applied cashback without a ledger entry",
                order_id=str(order_uuid),
            )
            return CashbackApplyResult.skipped(CashbackSkipReason.ALREADY_APPLIED)

        account = await self._ledger.ensure_account(company_uuid, customer_id, program_id)
        await self._ledger.credit(company_uuid, customer_id, program_id, amount)
        entry.account_id = account.id

        annotation = CashbackAnnotation(
            applied=True,
            program_id=str(program_id),
            percent=format_percent(rule_set.percent),
            base=rule_set.base.value,
            amount=normalize_amount(amount),
            applied_at=_utcnow().isoformat(),
            applied_by=changed_by,
            reversals={},
        )
        locked.metadata_json = annotation.merge_into(locked.metadata_json)
        await self._db.commit()

        logger.info(
            "Applied cashback for paid order",
            order_id=str(order_uuid),
            company_id=str(company_uuid),
            customer_id=str(customer_id),
            program_id=str(program_id),
            amount=annotation.amount,
            changed_by=changed_by,
        )
        return CashbackApplyResult(
            applied=True,
            amount=annotation.amount,
            program_id=program_id,
        )

    async def _reverse(
        self,
        return_request_id: UUID | str,
        company_id: UUID | str,
        changed_by: str | None,
    ) -> CashbackReverseResult:
        return_uuid = _coerce_uuid(return_request_id)
        company_uuid = _coerce_uuid(company_id)
        if return_uuid is None or company_uuid is None:
            return CashbackReverseResult.skipped(CashbackSkipReason.RETURN_OR_ORDER_NOT_FOUND)

        return_request = await self._get_return_request(return_uuid, company_uuid)
        if return_request is None:
            return CashbackReverseResult.skipped(CashbackSkipReason.RETURN_OR_ORDER_NOT_FOUND)
        order = await self._get_order(return_request.order_id, company_uuid)
        if order is None:
            return CashbackReverseResult.skipped(CashbackSkipReason.RETURN_OR_ORDER_NOT_FOUND)
        if return_request.refund_amount is None:
            return CashbackReverseResult.skipped(CashbackSkipReason.REFUND_AMOUNT_MISSING)
        if return_request.status not in REVERSIBLE_RETURN_STATUSES:
            return CashbackReverseResult.skipped(CashbackSkipReason.RETURN_NOT_APPROVED)

        annotation = CashbackAnnotation.from_metadata(order.metadata_json)
        if not annotation.applied:
            return CashbackReverseResult.skipped(CashbackSkipReason.NO_CASHBACK_ON_ORDER)
        applied_amount = annotation.applied_amount()
        if applied_amount <= ZERO:
            return CashbackReverseResult.skipped(CashbackSkipReason.INVALID_CASHBACK_AMOUNT)
        if annotation.has_reversal(return_uuid):
            return CashbackReverseResult.skipped(CashbackSkipReason.ALREADY_REVERSED)

        order_id = order.id
        customer_id = order.customer_id
        refund_amount = to_decimal(return_request.refund_amount)
        order_total = to_decimal(order.total)
        ratio = reversal_ratio(refund_amount, order_total)
        requested = quantize_amount(applied_amount * ratio)
        reverse_amount = self._cap_reversal(requested, annotation, order_id=order_id)
        if reverse_amount <= ZERO:
            return CashbackReverseResult.skipped(CashbackSkipReason.REVERSE_ZERO)

        program_id = await self._resolve_program_id(annotation, company_uuid, changed_by)

        entry = CashbackLedgerEntry(
            company_id=company_uuid,
            program_id=program_id,
            customer_id=customer_id,
            order_id=order_id,
            return_request_id=return_uuid,
            entry_type=CashbackLedgerEntryType.REVERSAL,
            amount=reverse_amount,
            requested_amount=requested,
            ratio=ratio.quantize(RATIO_QUANTUM),
            dedupe_key=reversal_dedupe_key(order_id, return_uuid),
            changed_by=changed_by,
            metadata_json={
                "refundAmount": normalize_amount(refund_amount),
                "orderTotal": normalize_amount(order_total),
                "appliedAmount": normalize_amount(applied_amount),
            },
        )
        if not await self._claim(entry):
            return CashbackReverseResult.skipped(CashbackSkipReason.ALREADY_REVERSED)

        locked = await self._lock_order(order_id, company_uuid)
        if locked is None:
            await self._db.rollback()
            return CashbackReverseResult.skipped(CashbackSkipReason.RETURN_OR_ORDER_NOT_FOUND)
        current = CashbackAnnotation.from_metadata(locked.metadata_json)
        if not current.applied:
            await self._db.rollback()
            return CashbackReverseResult.skipped(CashbackSkipReason.NO_CASHBACK_ON_ORDER)
        if current.has_reversal(return_uuid):
            await self._db.rollback()
            return CashbackReverseResult.skipped(CashbackSkipReason.ALREADY_REVERSED)

        # Another return may have committed a reversal since the first read.
        capped = self._cap_reversal(requested, current, order_id=order_id)
        if capped <= ZERO:
            await self._db.rollback()
            return CashbackReverseResult.skipped(CashbackSkipReason.REVERSE_ZERO)
        if capped != reverse_amount:
            reverse_amount = capped
            entry.amount = capped

        account = await self._ledger.ensure_account(company_uuid, customer_id, program_id)
        await self._ledger.debit(company_uuid, customer_id, program_id, reverse_amount)
        entry.account_id = account.id

        current.reversals[str(return_uuid)] = normalize_amount(reverse_amount)
        locked.metadata_json = current.merge_into(locked.metadata_json)
        await self._db.commit()

        logger.info(
            "Reversed cashback for return",
            return_request_id=str(return_uuid),
            order_id=str(order_id),
            company_id=str(company_uuid),
            amount=normalize_amount(reverse_amount),
            ratio=str(ratio),
            changed_by=changed_by,
        )
        return CashbackReverseResult(
            reversed=True,
            amount=normalize_amount(reverse_amount),
            ratio=float(ratio),
        )

    async def _claim(self, entry: CashbackLedgerEntry) -> bool:
        """Insert the ledger entry that owns this event; False if another writer has it."""

        self._db.add(entry)
        try:
            await self._db.flush()
        except IntegrityError:
            dedupe_key = entry.dedupe_key
            await self._db.rollback()
            existing = await self._find_entry(dedupe_key)
            if existing is None:
                raise
            logger.info("Cashback event already processed", dedupe_key=dedupe_key)
            return False
        return True

    async def _find_entry(self, dedupe_key: str) -> CashbackLedgerEntry | None:
        stmt = select(CashbackLedgerEntry).where(CashbackLedgerEntry.dedupe_key == dedupe_key)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    def _cap_reversal(
        self,
        amount: Decimal,
        annotation: CashbackAnnotation,
        *,
        order_id: UUID,
    ) -> Decimal:
        if not settings.cashback_cap_cumulative_reversals:
            return amount

        remaining = quantize_amount(annotation.applied_amount() - annotation.reversed_total())
        if amount <= remaining:
            return amount

        logger.warning(
            "Capping cashback reversal at the unreversed remainder",
            order_id=str(order_id),
            requested=normalize_amount(amount),
            remaining=normalize_amount(remaining),
        )
        return max(remaining, ZERO)

    async def _resolve_program_id(
        self,
        annotation: CashbackAnnotation,
        company_id: UUID,
        changed_by: str | None,
    ) -> UUID:
        program_uuid = _coerce_uuid(annotation.program_id)
        if program_uuid is not None:
            program = await self._registry.get_program(program_uuid, company_id)
            if program is not None:
                return program.id
        logger.warning(
            "Cashback annotation references an unknown program; using the company program",
            program_id=annotation.program_id,
            company_id=str(company_id),
        )
        program = await self._registry.ensure_program(company_id, created_by=changed_by)
        return program.id

    async def _get_order(self, order_id: UUID, company_id: UUID) -> Order | None:
        stmt = select(Order).where(Order.id == order_id, Order.company_id == company_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_order(self, order_id: UUID, company_id: UUID) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.id == order_id, Order.company_id == company_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_return_request(self, return_request_id: UUID, company_id: UUID) -> ReturnRequest | None:
        stmt = select(ReturnRequest).where(
            ReturnRequest.id == return_request_id,
            ReturnRequest.company_id == company_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()


def _effective_rules(program: CashbackProgram) -> CashbackRuleSet:
    if program.status != LoyaltyProgramStatus.ACTIVE:
        return CashbackRuleSet.disabled()
    return CashbackRuleSet.from_rules(program.rules)


def _coerce_uuid(value: Any) -> UUID | None:
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _actor(changed_by: Any) -> str | None:
    if changed_by is None:
        return None
    return str(changed_by)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "CashbackService",
    "credit_dedupe_key",
    "reversal_dedupe_key",
    "reversal_ratio",
]
