"""Scheduled maintenance jobs for the token ledger."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime

from croniter import croniter
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.base import utcnow
from src.database.client import get_session
from src.features.auth.ledger import TokenLedger

logger = logging.getLogger(__name__)

JobFunc = Callable[[AsyncSession], Awaitable[int]]
SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


async def cleanup_expired_tokens(session: AsyncSession) -> int:
    """Delete ledger records past their expiry."""
    removed = await TokenLedger.purge_expired(session)
    logger.info(f"Expired tokens cleanup: {removed} removed")
    return removed


async def cleanup_inactive_sessions(session: AsyncSession) -> int:
    """Delete refresh records older than ``session_max_age_days``."""
    removed = await TokenLedger.purge_stale_sessions(session, settings.session_max_age_days)
    logger.info(f"Inactive sessions cleanup: {removed} removed")
    return removed


@dataclass
class CronJob:
    name: str
    schedule: str
    func: JobFunc
    next_run: datetime | None = None

    def schedule_next(self, now: datetime) -> datetime:
        self.next_run = croniter(self.schedule, now).get_next(datetime)
        return self.next_run


class CronScheduler:
    """Runs jobs on cron schedules (UTC) from an asyncio background task."""

    def __init__(self, session_scope: SessionScope = get_session):
        self._session_scope = session_scope
        self._jobs: list[CronJob] = []
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def jobs(self) -> list[CronJob]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return self._running

    def add_job(self, name: str, schedule: str, func: JobFunc) -> CronJob:
        """Register a job.

        Raises:
            ValueError: If ``schedule`` is not a valid cron expression

        """
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron expression for job '{name}': {schedule}")
        job = CronJob(name=name, schedule=schedule, func=func)
        self._jobs.append(job)
        return job

    def start(self) -> None:
        """Start the scheduler loop as an asyncio background task."""
        if not settings.cron_enabled:
            logger.info("Cron jobs disabled, scheduler not started")
            return

        now = utcnow()
        for job in self._jobs:
            job.schedule_next(now)
            logger.info(f"Scheduled job '{job.name}' ({job.schedule}), next run at {job.next_run.isoformat()}")

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Cron scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cron scheduler stopped")

    async def run_job(self, job: CronJob) -> int | None:
        """Run one job in its own session. Failures are logged, never raised."""
        logger.info(f"Running job '{job.name}'")
        try:
            async with self._session_scope() as session:
                return await job.func(session)
        except Exception as e:
            logger.error(f"Job '{job.name}' failed: {e}", exc_info=e)
            return None

    async def run_due_jobs(self, now: datetime) -> None:
        for job in self._jobs:
            if job.next_run is not None and job.next_run <= now:
                await self.run_job(job)
                job.schedule_next(now)

    async def _poll_loop(self) -> None:
        """Sleep until the earliest next run, then run whatever is due."""
        while self._running:
            next_runs = [job.next_run for job in self._jobs if job.next_run is not None]
            if not next_runs:
                break

            delay = (min(next_runs) - utcnow()).total_seconds()
            try:
                await asyncio.sleep(max(delay, 0))
            except asyncio.CancelledError:
                break

            await self.run_due_jobs(utcnow())


def create_scheduler(session_scope: SessionScope = get_session) -> CronScheduler:
    """Scheduler with the ledger maintenance jobs on their configured schedules."""
    scheduler = CronScheduler(session_scope)
    scheduler.add_job("cleanupExpiredTokens", settings.cron_cleanup_schedule, cleanup_expired_tokens)
    scheduler.add_job("cleanupInactiveSessions", settings.cron_session_cleanup_schedule, cleanup_inactive_sessions)
    return scheduler
