"""
One-shot expiry sweep, meant to be run by an external scheduler (cron, a
Kubernetes CronJob, ...):

    python -m rfq_desk.sweeper [--now 2026-01-31T00:00:00]
"""
import argparse
import asyncio
from datetime import datetime
from typing import List, Optional

from .adapters.catalog import SQLModelCatalog
from .adapters.db_repository import SQLModelRepository
from .adapters.notifier import build_notifier
from .service.rfq_service import RFQService
from shared.db import AsyncSessionFactory, close_db_connection
from shared.logging import get_logger
from shared.settings import settings

logger = get_logger(__name__)


async def run_sweep(session_factory=AsyncSessionFactory, now: Optional[datetime] = None) -> int:
    async with session_factory() as session:
        service = RFQService(
            db_repository=SQLModelRepository(session),
            catalog=SQLModelCatalog(session),
            notifier=build_notifier(settings.NOTIFY_WEBHOOK_URL, settings.NOTIFY_WEBHOOK_TOKEN),
            session=session,
        )
        return await service.sweep_expired(now)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire RFQs whose expiry time has passed.")
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Reference time (ISO 8601, UTC). Defaults to the current time.",
    )
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        expired = await run_sweep(now=args.now)
    finally:
        await close_db_connection()
    print(f"expired={expired}")
    return expired


if __name__ == "__main__":
    asyncio.run(main())
