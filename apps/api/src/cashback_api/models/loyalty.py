"""Cashback program, loyalty account and ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Numeric,
    String,
    JSON,
    func,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from cashback_api.db.base import Base, enum_values


class LoyaltyProgramType(str, Enum):
    """Kinds of company loyalty programs."""

    CASHBACK = "cashback"


class LoyaltyProgramStatus(str, Enum):
    """Lifecycle statuses for loyalty programs."""

    ACTIVE = "active"
    PAUSED = "paused"


class CashbackBase(str, Enum):
    """Order amount the cashback percentage is computed against."""

    SUBTOTAL = "subtotal"
    TOTAL = "total"


class CashbackTrigger(str, Enum):
    """Order lifecycle events that credit cashback."""

    PAYMENT_COMPLETED = "payment_completed"


class CashbackProgram(Base):
    """Company-scoped cashback configuration; one per company."""

    __tablename__ = "loyalty_programs"
    __table_args__ = (
        UniqueConstraint("company_id", "program_type", name="uq_loyalty_programs_company_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    program_type = Column(
        SqlEnum(LoyaltyProgramType, name="loyalty_program_type", values_callable=enum_values),
        nullable=False,
        default=LoyaltyProgramType.CASHBACK,
        server_default=LoyaltyProgramType.CASHBACK.value,
    )
    status = Column(
        SqlEnum(LoyaltyProgramStatus, name="loyalty_program_status", values_callable=enum_values),
        nullable=False,
        default=LoyaltyProgramStatus.ACTIVE,
        server_default=LoyaltyProgramStatus.ACTIVE.value,
    )
    rules = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    accounts = relationship("LoyaltyAccount", back_populates="program")


class LoyaltyAccountStatus(str, Enum):
    """Lifecycle statuses for customer loyalty accounts."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class LoyaltyAccount(Base):
    """Per customer, per program cashback balance."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        UniqueConstraint("customer_id", "program_id", name="uq_loyalty_accounts_customer_program"),
        CheckConstraint("current_points >= 0", name="ck_loyalty_accounts_current_points_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_loyalty_accounts_total_earned_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), nullable=False)
    program_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_programs.id", ondelete="CASCADE"), nullable=False
    )
    current_points = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_earned = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_redeemed = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    status = Column(
        SqlEnum(LoyaltyAccountStatus, name="loyalty_account_status", values_callable=enum_values),
        nullable=False,
        default=LoyaltyAccountStatus.ACTIVE,
        server_default=LoyaltyAccountStatus.ACTIVE.value,
    )
    join_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_activity = Column(DateTime(timezone=True), nullable=True)
    last_points_earned = Column(Numeric(14, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    program = relationship("CashbackProgram", back_populates="accounts")


class CashbackLedgerEntryType(str, Enum):
    """Ledger entry types for cashback balance movements."""

    CREDIT = "credit"
    REVERSAL = "reversal"


class CashbackLedgerEntry(Base):
    """Append-only record of every cashback credit and reversal.

    ``dedupe_key`` is unique: one credit per order, one reversal per return
    request. Inserting it is how an operation claims its triggering event.
    """

    __tablename__ = "cashback_ledger_entries"
    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_cashback_ledger_entries_dedupe_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    program_id = Column(UUID(as_uuid=True), nullable=False)
    account_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_accounts.id", ondelete="SET NULL"), nullable=True
    )
    customer_id = Column(UUID(as_uuid=True), nullable=False)
    order_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    return_request_id = Column(UUID(as_uuid=True), nullable=True)
    entry_type = Column(
        SqlEnum(CashbackLedgerEntryType, name="cashback_ledger_entry_type", values_callable=enum_values),
        nullable=False,
    )
    amount = Column(Numeric(14, 2), nullable=False)
    requested_amount = Column(Numeric(14, 2), nullable=True)
    ratio = Column(Numeric(9, 6), nullable=True)
    dedupe_key = Column(String(255), nullable=False)
    changed_by = Column(String(255), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    account = relationship("LoyaltyAccount")
