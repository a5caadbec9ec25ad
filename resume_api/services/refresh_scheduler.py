"""
Lightweight in-process scheduler that sweeps subscriptions whose billing
period has ended and refreshes their credits.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from croniter import croniter

from resume_api.core.exceptions import AppError
from resume_api.services.credit_ledger import CreditLedger, utcnow

logger = logging.getLogger(__name__)


class CreditRefreshScheduler:
    """Runs the monthly refresh sweep on a cron schedule."""

    def __init__(self, ledger: CreditLedger, schedule_cron: str = "0 * * * *", batch_size: int = 500):
        self.ledger = ledger
        self.schedule_cron = schedule_cron
        self.batch_size = batch_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        """Start scheduler loop as background task."""
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("CreditRefreshScheduler started")

    async def stop(self) -> None:
        """Stop scheduler loop and wait for completion."""
        self._stop_event.set()
        if self._task:
            await self._task
        logger.info("CreditRefreshScheduler stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            delay = self.seconds_until_next_run(utcnow())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as exc:
                logger.exception("CreditRefreshScheduler tick failed: %s", exc)

    def seconds_until_next_run(self, now: datetime) -> float:
        next_run = croniter(self.schedule_cron, now).get_next(datetime)
        return max(0.0, (next_run - now).total_seconds())

    def run_once(self, now: datetime | None = None) -> int:
        """Refresh every due subscription, batch by batch. Returns how many were refreshed."""
        now = now or utcnow()
        refreshed = 0
        skipped: set[str] = set()
        while True:
            due = self.ledger.due_for_refresh(now=now, limit=self.batch_size + len(skipped))
            batch = [user_id for user_id in due if user_id not in skipped]
            if not batch:
                break
            for user_id in batch:
                try:
                    if self.ledger.refresh_monthly(user_id, now=now):
                        refreshed += 1
                        continue
                except AppError as exc:
                    logger.warning("Credit refresh failed for user %s: %s", user_id, exc)
                # Still due; keep it out of the next batch.
                skipped.add(user_id)
        if refreshed:
            logger.info("Credit refresh sweep refreshed %s subscription(s)", refreshed)
        return refreshed
