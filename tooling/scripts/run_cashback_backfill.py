#!/usr/bin/env python3
"""Apply cashback to paid orders that never received it.

Intended usage: schedule via cron after incidents where the payment hook
failed, or run once after enabling cashback for an existing company.

Example:
    python tooling/scripts/run_cashback_backfill.py --company-id <uuid> --limit 500

Without `--company-id` the companies listed in
`CASHBACK_BACKFILL_COMPANY_IDS` are swept; when that is empty every company is.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from uuid import UUID

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill cashback credits for paid orders")
    parser.add_argument(
        "--company-id",
        action="append",
        type=UUID,
        default=[],
        dest="company_ids",
        help="Restrict the sweep to a company (repeatable).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of orders to process in this run.",
    )
    return parser.parse_args()


async def _run(company_ids: list[UUID], limit: int | None) -> dict:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from cashback_api.core.logging import configure_logging  # type: ignore import-position
    from cashback_api.core.settings import settings  # type: ignore import-position
    from cashback_api.db.session import async_session  # type: ignore import-position
    from cashback_api.jobs.cashback import run_cashback_backfill  # type: ignore import-position
    from cashback_api.observability.tracing import configure_tracing  # type: ignore import-position

    configure_logging(
        service_name=settings.service_name,
        environment=settings.environment,
        version="0.1.0",
    )
    configure_tracing(
        service_name=settings.service_name,
        service_version="0.1.0",
        environment=settings.environment,
    )

    scope = company_ids or [UUID(value) for value in settings.cashback_backfill_company_ids]
    return await run_cashback_backfill(
        session_factory=async_session,
        company_ids=scope or None,
        limit=limit,
    )


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.company_ids, args.limit))
    logger.success("Cashback backfill completed", **summary)
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
