"""Cashback service exports."""

from .annotation import CashbackAnnotation, CashbackOrderState  # noqa: F401
from .cashback_service import (  # noqa: F401
    CashbackService,
    credit_dedupe_key,
    reversal_dedupe_key,
    reversal_ratio,
)
from .errors import CashbackError, CashbackIntegrityError  # noqa: F401
from .ledger import AccountLedger  # noqa: F401
from .money import normalize_amount, quantize_amount, to_decimal  # noqa: F401
from .registry import CashbackRuleSet, ProgramRegistry  # noqa: F401
from .results import CashbackApplyResult, CashbackReverseResult, CashbackSkipReason  # noqa: F401
from .triggers import handle_payment_status_change, handle_return_status_change  # noqa: F401
