#!/usr/bin/env python3
"""
Backfill SLA tracking for open tickets that have none.

Tickets created before a matching SLA policy existed (or while the
automation service was down) have no SLA state; this starts tracking for
them from now.

Usage:
    python scripts/backfill_sla.py
"""

import asyncio

from deskflow.composition import build_container
from deskflow.config import settings
from deskflow.infrastructure.database import close_database, get_session_context, init_database
from deskflow.shared.infrastructure.logging import get_logger, setup_logging
from deskflow.sla.infrastructure.external import config_manager

logger = get_logger(__name__)


async def main() -> int:
    setup_logging(settings.log_level, settings.environment)
    config_manager.load(settings.automation_config_path)
    init_database()

    try:
        async with get_session_context() as session:
            created = await build_container(session).sla_tracker.backfill_missing()
    finally:
        await close_database()

    print(f"Created SLA tracking for {created} ticket(s)")
    return created


if __name__ == "__main__":
    asyncio.run(main())
