"""SQLAlchemy models package."""

# Import all models
from .loyalty import (  # noqa: F401
    CashbackBase,
    CashbackLedgerEntry,
    CashbackLedgerEntryType,
    CashbackProgram,
    CashbackTrigger,
    LoyaltyAccount,
    LoyaltyAccountStatus,
    LoyaltyProgramStatus,
    LoyaltyProgramType,
)
from .order import Order, PaymentStatusEnum, ReturnRequest, ReturnRequestStatusEnum  # noqa: F401
