"""
APScheduler configuration for the relay daemon.

Manages:
- The initial cycle, run right away in the calling thread
- Periodic cycles on a fixed interval (daemon mode)
- Stopping the loop on interrupt or, by policy, on the first failed cycle
"""

import logging
import threading
from typing import Callable, Optional

from apscheduler.events import EVENT_SCHEDULER_STARTED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = logging.getLogger(__name__)

FAILURE_TERMINATE = 'terminate'
FAILURE_CONTINUE = 'continue'


class CycleScheduler:
    """
    Runs a backup cycle once, then repeatedly on an interval.

    Cycles never overlap: the scheduler has a single worker and allows one
    instance of the job at a time, coalescing missed runs. The main thread
    only waits for the next tick or for stop(), whichever comes first.
    A cycle in progress is never preempted by stop().
    """

    def __init__(self, run_cycle: Callable[[], object], interval_seconds: float,
                 failure_policy: str = FAILURE_TERMINATE):
        """
        Initialize the scheduler.

        Args:
            run_cycle: Callable running one cycle, raising on failure
            interval_seconds: Seconds between periodic cycles
            failure_policy: 'terminate' to stop on the first failed cycle,
                'continue' to log the failure and wait for the next tick
        """
        if failure_policy not in (FAILURE_TERMINATE, FAILURE_CONTINUE):
            raise ValueError(f"Invalid failure policy: {failure_policy}")

        self.run_cycle = run_cycle
        self.interval_seconds = interval_seconds
        self.failure_policy = failure_policy
        self.scheduler: Optional[BlockingScheduler] = None
        self.failure: Optional[BaseException] = None
        self._stop_requested = threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def run(self, oneshot: bool = False):
        """
        Run the initial cycle and, unless oneshot, keep running cycles until stopped.

        Args:
            oneshot: Run a single cycle and return

        Raises:
            Exception: The failing cycle's error under the 'terminate' policy
        """
        logger.info("Running initial backup")
        self._run_cycle_with_policy()

        if oneshot:
            logger.info("Oneshot selected, exiting")
            return

        if self.stop_requested:
            logger.info("Stop requested during the initial backup, not scheduling further backups")
            return

        executor = ThreadPoolExecutor(max_workers=1)
        self.scheduler = BlockingScheduler(
            executors={'default': executor},
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one cycle at a time
                'misfire_grace_time': None
            },
            timezone='UTC'
        )
        # A stop() that lands before start() cannot shut the scheduler down itself
        self.scheduler.add_listener(self._on_scheduler_started, EVENT_SCHEDULER_STARTED)
        self.scheduler.add_job(
            func=self._scheduled_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id='backup_cycle',
            name='Backup relay cycle',
            replace_existing=True
        )

        logger.info(f"Scheduling backups every {self.interval_seconds:g}s")
        self.scheduler.start()
        logger.info("Scheduler stopped, waiting for any backup in progress")

        # Wait here rather than at interpreter exit so a second interrupt reaches the caller
        executor.shutdown(wait=True)

        if self.failure is not None:
            raise self.failure

    def stop(self):
        """Stop waiting for the next tick. Safe to call from a signal handler."""
        self._stop_requested.set()

        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _on_scheduler_started(self, event):
        if self.stop_requested and self.scheduler.running:
            logger.info("Stop requested before the scheduler started")
            self.scheduler.shutdown(wait=False)

    def _run_cycle_with_policy(self):
        try:
            self.run_cycle()
        except Exception:
            if self.failure_policy == FAILURE_TERMINATE:
                raise
            logger.exception("Backup cycle failed, waiting for the next scheduled run")

    def _scheduled_cycle(self):
        logger.info("Running periodic backup")
        try:
            self._run_cycle_with_policy()
        except Exception as e:
            logger.error(f"Backup cycle failed, stopping: {e}")
            self.failure = e
            self.stop()
