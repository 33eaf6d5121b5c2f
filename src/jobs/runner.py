"""Standalone process that runs the scheduled jobs.

Run with ``python -m src.jobs.runner`` or the ``storefront-cron`` script.
"""

import asyncio
import logging
import signal

from src.config.logging_config import configure_logging
from src.config.settings import settings
from src.database.client import close_db, init_db

# Both models must be registered before create_all resolves the tokens -> users key
from src.features.auth import models as auth_models  # noqa: F401
from src.features.user import models as user_models  # noqa: F401

from .cron import create_scheduler

logger = logging.getLogger(__name__)


async def run() -> None:
    await init_db()
    scheduler = create_scheduler()
    scheduler.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(f"Cron runner started ({settings.environment})")
    try:
        await stop_event.wait()
    finally:
        logger.info("Cron runner shutting down")
        await scheduler.stop()
        await close_db()


def main() -> None:
    configure_logging(settings.log_level)
    asyncio.run(run())


if __name__ == "__main__":
    main()
