"""Background Worker for Necessity Reminder.

This module implements the scheduling loop that scans for reminders due soon
and notifies their owners.

The worker:
- Runs a scan every 60 seconds (configurable) on a fixed cadence
- Never runs two scans at once; a tick that would overlap is skipped
- Claims each due reminder before sending, so a reminder is notified at most once
- Logs delivery failures without retrying them (the claim is kept)
- Survives failed scans; optionally gives up after too many in a row
"""

import asyncio
import signal
import sys
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import database
from config import settings
from dispatcher import NotificationDispatcher, build_channel
from exceptions import SchedulerFailure
from logger_config import setup_logger
from scanner import DueWindowScanner

logger = setup_logger(__name__, 'scheduler.log')


@dataclass
class TickResult:
    claimed: int = 0
    delivered: int = 0
    failed: int = 0


class ReminderScheduler:
    """Drives the scanner on a fixed period and hands claimed reminders to the dispatcher.

    Args:
        scanner: Selects and claims due reminders
        dispatcher: Delivers notifications for claimed reminders
        interval_seconds: Period between ticks
        max_consecutive_failures: Raise SchedulerFailure from ``run`` once more
            than this many scans fail in a row (0 disables the limit)
    """

    def __init__(
        self,
        scanner: DueWindowScanner,
        dispatcher: NotificationDispatcher,
        interval_seconds: float = 60,
        max_consecutive_failures: int = 0
    ):
        self.scanner = scanner
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds
        self.max_consecutive_failures = max_consecutive_failures

        self.consecutive_failures = 0
        self.iteration = 0
        self._tick_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_tick(self) -> Optional[TickResult]:
        """Run one scan and dispatch its claims.

        Returns:
            TickResult, or None if another tick was still running and this one was skipped.

        Raises:
            SchedulerFailure: if the consecutive scan failure limit is exceeded
        """
        if self._tick_lock.locked():
            logger.warning("Previous scan still running, skipping this tick")
            return None

        async with self._tick_lock:
            self.iteration += 1
            logger.debug(f"🔍 Checking for upcoming reminders (iteration {self.iteration})")

            try:
                claimed = self.scanner.scan()
            except Exception as e:
                self.consecutive_failures += 1
                logger.error(
                    f"Scan failed ({self.consecutive_failures} in a row): {str(e)}",
                    exc_info=True
                )
                if 0 < self.max_consecutive_failures < self.consecutive_failures:
                    raise SchedulerFailure(
                        f"{self.consecutive_failures} consecutive scan failures, giving up"
                    ) from e
                return TickResult()

            self.consecutive_failures = 0
            if not claimed:
                return TickResult()

            results = await self.dispatcher.dispatch_batch(claimed)
            delivered = sum(1 for r in results if r.delivered)
            result = TickResult(claimed=len(claimed), delivered=delivered, failed=len(results) - delivered)

            logger.info(f"📧 Sent {result.delivered} reminder notification(s), {result.failed} failed")
            return result

    async def run(self):
        """Tick until ``stop`` is called.

        Ticks are aligned to a fixed cadence starting now. If a tick overruns
        the interval, the missed ticks are skipped rather than queued.
        """
        logger.info(f"Reminder scheduler started (interval: {self.interval_seconds}s)")
        self._stop_event.clear()
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while not self._stop_event.is_set():
            await self.run_tick()

            next_tick += self.interval_seconds
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // self.interval_seconds) + 1
                logger.warning(f"Scan overran the interval, skipping {missed} tick(s)")
                next_tick += missed * self.interval_seconds

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                pass

        logger.info("Reminder scheduler stopped")

    def start(self) -> asyncio.Task:
        """Start ``run`` as a background task on the running event loop."""
        if self.running:
            return self._task
        self._task = asyncio.create_task(self.run(), name="reminder-scheduler")
        return self._task

    def request_stop(self):
        """Ask the loop to finish after the current tick. Safe to call from a signal handler."""
        self._stop_event.set()

    async def stop(self):
        """Ask the loop to finish and wait for the current tick to complete."""
        self.request_stop()
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None


def build_scheduler(session_factory, app_settings=settings, clock=None) -> ReminderScheduler:
    """Wire a scheduler from settings."""
    scanner_kwargs = {}
    if clock is not None:
        scanner_kwargs["clock"] = clock

    scanner = DueWindowScanner(
        session_factory,
        lookahead=timedelta(minutes=app_settings.NOTIFY_LOOKAHEAD_MINUTES),
        catch_up=app_settings.SCAN_CATCH_UP,
        **scanner_kwargs
    )
    dispatcher = NotificationDispatcher(
        build_channel(app_settings),
        timeout_seconds=app_settings.DELIVERY_TIMEOUT_SECONDS,
        concurrency=app_settings.DISPATCH_CONCURRENCY,
        dashboard_url=app_settings.DASHBOARD_URL,
    )
    return ReminderScheduler(
        scanner,
        dispatcher,
        interval_seconds=app_settings.SCHEDULER_INTERVAL_SECONDS,
        max_consecutive_failures=app_settings.MAX_CONSECUTIVE_SCAN_FAILURES,
    )


async def worker_main():
    """Create tables, start the scheduler and run it until a shutdown signal."""
    logger.info(f"Scheduler enabled: {settings.SCHEDULER_ENABLED}")
    logger.info(f"Check interval: {settings.SCHEDULER_INTERVAL_SECONDS} seconds")
    logger.info(f"Lookahead: {settings.NOTIFY_LOOKAHEAD_MINUTES} minutes (catch-up: {settings.SCAN_CATCH_UP})")
    logger.info(f"Delivery channel: {settings.DELIVERY_CHANNEL}")

    if not settings.SCHEDULER_ENABLED:
        logger.warning("Scheduler is disabled in configuration. Exiting.")
        return

    database.init_db()
    scheduler = build_scheduler(database.SessionLocal)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, _request_shutdown, scheduler, signum)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(signum, lambda s, f: _request_shutdown(scheduler, s))

    await scheduler.run()


def _request_shutdown(scheduler: ReminderScheduler, signum):
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    scheduler.request_stop()


def main():
    """Main entry point for the background worker."""
    logger.info("=" * 60)
    logger.info("Necessity Reminder - Background Worker")
    logger.info("=" * 60)

    started = time.monotonic()
    try:
        asyncio.run(worker_main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except SchedulerFailure as e:
        logger.error(f"Fatal: {str(e)}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error in background worker: {str(e)}", exc_info=True)
        sys.exit(1)

    logger.info(f"Background worker stopped after {time.monotonic() - started:.0f}s")
    sys.exit(0)


if __name__ == "__main__":
    main()
