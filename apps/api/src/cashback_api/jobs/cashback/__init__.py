"""Cashback job exports."""

from .backfill import run_cashback_backfill  # noqa: F401

__all__ = [
    "run_cashback_backfill",
]
