"""
Export Scheduler - recurring and manual triggers around one orchestrator.

At most one export runs at a time: a trigger that arrives while a run is in
flight is dropped, not queued. Retry-later failures shorten the next wait
with exponential backoff; a permission refusal stops the loop until an
operator intervenes.
"""

import asyncio
import logging
import random
from enum import Enum
from typing import Awaitable, Callable

from health_exporter.core.errors import ExportError, PermissionDeniedError
from health_exporter.core.orchestrator import ExportOrchestrator, ExportReport
from health_exporter.core.resilience import CircuitBreaker, ExponentialBackoff

logger = logging.getLogger(__name__)

ESCALATION_KEY = "provider"


class SchedulerStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    BACKING_OFF = "backing_off"
    ESCALATED = "escalated"
    STOPPED = "stopped"


class ExportScheduler:
    """
    Drives ExportOrchestrator.run() on a timer.

    The nominal period is ``interval_minutes``; each wait is placed somewhere
    inside the last ``tolerance_minutes`` of it, the way OS job schedulers
    batch periodic work.
    """

    def __init__(
        self,
        orchestrator: ExportOrchestrator,
        interval_minutes: float = 30,
        tolerance_minutes: float = 15,
        backoff: ExponentialBackoff | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.orchestrator = orchestrator
        self.interval = interval_minutes * 60
        self.tolerance = min(tolerance_minutes * 60, self.interval)
        self.backoff = backoff or ExponentialBackoff(base_delay=60.0, max_delay=self.interval, max_retries=0)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, timeout=6 * 3600)
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()

        self.status = SchedulerStatus.IDLE
        self.consecutive_failures = 0
        self.runs = 0
        self.dropped = 0
        self.last_report: ExportReport | None = None
        self.last_error: ExportError | None = None

    # ──────────────────────────────────────────────
    # Triggers
    # ──────────────────────────────────────────────

    async def trigger_now(self, trigger: str = "manual") -> ExportReport | None:
        """
        Run one export unless one is already in flight.

        Returns None for a dropped trigger. Export errors propagate after the
        scheduler state has been updated.
        """
        if self._lock.locked():
            self.dropped += 1
            logger.warning(f"Export already running, dropping {trigger} trigger")
            return None

        async with self._lock:
            self.status = SchedulerStatus.RUNNING
            self.runs += 1
            try:
                report = await self.orchestrator.run(trigger)
            except PermissionDeniedError as e:
                self.last_error = e
                self.status = SchedulerStatus.STOPPED
                logger.error(f"Permission denied, scheduling stopped: {e}")
                raise
            except ExportError as e:
                self.last_error = e
                if e.retryable:
                    self._record_failure(e)
                else:
                    self.status = SchedulerStatus.IDLE
                raise
            except Exception:
                self.status = SchedulerStatus.IDLE
                logger.exception(f"Unexpected error during {trigger} export")
                raise

            self.consecutive_failures = 0
            self.circuit_breaker.record_success(ESCALATION_KEY)
            self.last_report = report
            self.last_error = None
            self.status = SchedulerStatus.IDLE
            return report

    def _record_failure(self, error: ExportError) -> None:
        self.consecutive_failures += 1
        self.circuit_breaker.record_failure(ESCALATION_KEY)
        if self.circuit_breaker.is_open(ESCALATION_KEY):
            self.status = SchedulerStatus.ESCALATED
            logger.error(
                f"Export failing persistently ({self.consecutive_failures} consecutive runs): {error}"
            )
        else:
            self.status = SchedulerStatus.BACKING_OFF
            logger.warning(f"Export failed, will retry later: {error}")

    # ──────────────────────────────────────────────
    # Loop
    # ──────────────────────────────────────────────

    def next_delay(self) -> float:
        """Seconds until the next scheduled attempt."""
        if self.consecutive_failures:
            return min(self.backoff.calculate_delay(self.consecutive_failures - 1), self.interval)
        return self.interval - self.tolerance + random.uniform(0, self.tolerance)

    async def _wait(self, delay: float) -> None:
        if self._sleep is not None:
            await self._sleep(delay)
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        self._stop.set()

    async def run_forever(self, max_runs: int | None = None) -> None:
        """
        Trigger immediately, then keep triggering until stopped.

        Returns when ``stop()`` is called, after ``max_runs`` scheduled
        attempts, or when the provider refuses permission.
        """
        attempts = 0
        while not self._stop.is_set():
            attempts += 1
            try:
                await self.trigger_now("scheduled")
            except PermissionDeniedError:
                return
            except ExportError as e:
                if not e.retryable:
                    raise

            if max_runs is not None and attempts >= max_runs:
                return

            delay = self.next_delay()
            logger.info(f"Next export in {delay / 60:.1f} min")
            await self._wait(delay)
