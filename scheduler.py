import asyncio
import logging
from datetime import datetime, timezone

UTC = timezone.utc

logger = logging.getLogger("uvicorn")


class Scheduler:
    """
    Minimal in-process scheduler (cron-like).
    Usage:
        sched = Scheduler()
        sched.every(86400, sweeper.run_cleanup)
        await sched.run_forever()

    A job is not started again while its previous run is still going, and a
    failing run is logged without affecting the other jobs.
    """
    def __init__(self, tick: float = 1.0):
        self.tick = tick
        self.jobs = []  # list[[seconds, coro, args, kwargs, last_run, task]]

    def every(self, seconds: int, coro, *args, **kwargs):
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.jobs.append([seconds, coro, args, kwargs, None, None])

    @staticmethod
    async def _guard(coro, args, kwargs):
        name = getattr(coro, "__qualname__", repr(coro))
        try:
            await coro(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[scheduler] job %s failed", name)

    def run_pending(self, now: datetime | None = None) -> int:
        """Start every due job; returns how many were started."""
        now = now or datetime.now(tz=UTC)
        started = 0
        for job in self.jobs:
            seconds, coro, args, kwargs, last_run, task = job
            if task is not None and not task.done():
                continue
            if last_run is None or (now - last_run).total_seconds() >= seconds:
                job[5] = asyncio.create_task(self._guard(coro, args, kwargs))
                job[4] = now
                started += 1
        return started

    async def run_forever(self):
        try:
            while True:
                self.run_pending()
                await asyncio.sleep(self.tick)
        finally:
            for job in self.jobs:
                task = job[5]
                if task is not None and not task.done():
                    task.cancel()
