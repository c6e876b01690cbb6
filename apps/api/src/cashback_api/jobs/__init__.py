"""Recurring job entrypoints for cashback maintenance."""

__all__ = [
    "cashback",
]
