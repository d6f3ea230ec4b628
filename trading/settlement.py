import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def _job_id(transaction_id: int) -> str:
    return f"settle_{transaction_id}"


class SettlementScheduler:
    """One cancellable date job per pending transaction."""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self):
        if self.running:
            return
        self.scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone="UTC",
        )
        self.scheduler.start()

    def schedule(self, transaction_id: int, delay_seconds: float, settle: Callable[[int], Awaitable[object]]):
        if not self.running:
            raise RuntimeError("Settlement scheduler is not running")

        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self.scheduler.add_job(
            settle,
            "date",
            run_date=run_date,
            args=[transaction_id],
            id=_job_id(transaction_id),
            replace_existing=True,
            misfire_grace_time=300,
        )

    def cancel(self, transaction_id: int) -> bool:
        if not self.running:
            return False
        try:
            self.scheduler.remove_job(_job_id(transaction_id))
        except JobLookupError:
            return False
        return True

    def scheduled_ids(self) -> list[int]:
        if not self.running:
            return []
        return [
            int(job.id.removeprefix("settle_"))
            for job in self.scheduler.get_jobs()
            if job.id.startswith("settle_")
        ]

    def shutdown(self):
        if self.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
