"""Cashback engine exceptions."""


class CashbackError(RuntimeError):
    """Base exception for cashback engine failures."""


class CashbackIntegrityError(CashbackError):
    """Raised when ledger state contradicts an invariant the engine relies on."""
