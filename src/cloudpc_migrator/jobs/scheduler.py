"""
Concurrency-limited scheduler for migration jobs.

The scheduler owns the job collection. Each ``tick()``:

1. admits the lowest-ordered queued jobs while the number of ACTIVE jobs
   is below the concurrency cap (MONITORING jobs never count),
2. advances every due ACTIVE or MONITORING job once through the stage
   engine, failing only that job if it raises,
3. reports each job that became terminal to the observers.

Everything runs on one event loop; gateway calls are awaited one job at a
time, so the tick is the only writer of the collection.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from ..config.settings import Settings
from ..errors import (
    DuplicateJobError,
    InvalidConfigError,
    JobNotFoundError,
    JobStateError,
    MigrationError,
)
from ..gateway.base import ResourceGateway
from ..logging import StructuredLogger, create_logger
from .clock import PollClock
from .engine import StageEngine
from .observer import JobObserver, ObserverManager
from .types import JobRecord, JobStatus, MigrationRequest, Stage, StageEvent


class ReorderDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    TOP = "top"
    BOTTOM = "bottom"


@dataclass
class TickReport:
    """Job ids touched by one tick."""
    admitted: list[str] = field(default_factory=list)
    processed: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)


class MigrationScheduler:
    """Holds the ordered job set and drives it tick by tick.

    Example:
        ```python
        scheduler = MigrationScheduler(gateway, Settings.from_env())
        scheduler.enqueue(MigrationRequest("ada@contoso.com", "grp-old", "grp-new"))
        scheduler.start()
        await scheduler.run_until_idle()
        ```
    """

    def __init__(
        self,
        gateway: ResourceGateway,
        settings: Settings | None = None,
        *,
        observers: Iterable[JobObserver] | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or Settings()
        self.gateway = gateway
        self.poll_clock = PollClock(self.settings.polling, self.settings.timeouts)
        self.engine = StageEngine(gateway, self.poll_clock)
        self.observers = ObserverManager(observers)
        self._logger = logger or create_logger(self.settings.logging)
        self._clock = clock

        self._jobs: dict[str, JobRecord] = {}
        self._reported: set[str] = set()
        self._concurrency = self.settings.scheduler.concurrency
        self._accepting = self.settings.scheduler.start_accepting
        self._ticking = False

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def max_concurrency(self) -> int:
        return self.settings.scheduler.max_concurrency

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    @property
    def active_count(self) -> int:
        return sum(1 for j in self._jobs.values() if j.status == JobStatus.ACTIVE)

    @property
    def monitoring_count(self) -> int:
        return sum(1 for j in self._jobs.values() if j.status == JobStatus.MONITORING)

    @property
    def has_pending_work(self) -> bool:
        """True while a tick could still change something."""
        for job in self._jobs.values():
            if job.status.is_in_flight:
                return True
            if job.status == JobStatus.QUEUED and self._accepting:
                return True
        return False

    def jobs(self) -> list[JobRecord]:
        """All jobs in insertion order."""
        return list(self._jobs.values())

    def queued(self) -> list[JobRecord]:
        """Queued jobs in admission order."""
        return sorted(
            (j for j in self._jobs.values() if j.status == JobStatus.QUEUED),
            key=lambda j: j.queue_order,
        )

    def get(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    # -------------------------------------------------------------------------
    # Queue control
    # -------------------------------------------------------------------------

    def _guard_tick(self, operation: str) -> None:
        if self._ticking:
            raise JobStateError(f"Cannot {operation} while a tick is in progress")

    def enqueue(self, job: JobRecord | MigrationRequest) -> JobRecord:
        """Add a job at the end of the queue.

        Raises:
            SameGroupError: If source and target group are identical
            DuplicateJobError: If an unfinished job for the same user and
                groups already exists
            JobStateError: If the job is not queued
        """
        self._guard_tick("enqueue")
        if isinstance(job, MigrationRequest):
            job = JobRecord.create(job)
        if job.status != JobStatus.QUEUED:
            raise JobStateError(f"Only queued jobs can be enqueued, not {job.status.value}")
        if job.job_id in self._jobs:
            raise DuplicateJobError(f"Job {job.job_id} is already enqueued", existing_job_id=job.job_id)

        key = job.job_key
        for existing in self._jobs.values():
            if not existing.status.is_terminal and existing.job_key == key:
                raise DuplicateJobError(
                    f"{job.user_principal_name} already has an unfinished migration "
                    f"from {job.source_group} to {job.target_group}",
                    existing_job_id=existing.job_id,
                )

        job.queue_order = max((j.queue_order for j in self._jobs.values()), default=0) + 1
        self._jobs[job.job_id] = job
        self._logger.info(
            f"Queued {job.user_principal_name}: {job.source_group} -> {job.target_group}",
            job_id=job.job_id,
            queue_order=job.queue_order,
        )
        self.observers.on_job_changed(job)
        return job

    def remove(self, job_id: str) -> JobRecord:
        """Remove a queued or finished job.

        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job is active or monitoring
        """
        self._guard_tick("remove jobs")
        job = self.get(job_id)
        if job.status.is_in_flight:
            raise JobStateError(
                f"Cannot remove job in status {job.status.value}; membership changes may be in progress"
            )
        del self._jobs[job_id]
        self._reported.discard(job_id)
        self._logger.info(f"Removed job for {job.user_principal_name}", job_id=job_id)
        self.observers.on_job_removed(job)
        return job

    def clear_finished(self) -> list[JobRecord]:
        """Remove every terminal job and return them."""
        finished = [j for j in self._jobs.values() if j.status.is_terminal]
        for job in finished:
            self.remove(job.job_id)
        return finished

    def reorder(self, job_id: str, direction: ReorderDirection | str) -> bool:
        """Move a queued job within the queue.

        Moving past either end is a no-op. Only queued jobs take part, so
        active and monitoring jobs are never affected.

        Returns:
            True if the job moved

        Raises:
            JobStateError: If the job is not queued
        """
        self._guard_tick("reorder jobs")
        direction = ReorderDirection(direction)
        job = self.get(job_id)
        if job.status != JobStatus.QUEUED:
            raise JobStateError(f"Only queued jobs can be reordered, not {job.status.value}")

        queue = self.queued()
        index = queue.index(job)
        target = {
            ReorderDirection.UP: index - 1,
            ReorderDirection.DOWN: index + 1,
            ReorderDirection.TOP: 0,
            ReorderDirection.BOTTOM: len(queue) - 1,
        }[direction]
        if target < 0 or target >= len(queue) or target == index:
            return False

        orders = [j.queue_order for j in queue]
        queue.insert(target, queue.pop(index))
        for order, queued_job in zip(orders, queue):
            if queued_job.queue_order != order:
                queued_job.queue_order = order
                self.observers.on_job_changed(queued_job)
        return True

    def set_concurrency(self, value: int) -> None:
        """Change the cap on ACTIVE jobs; takes effect on the next tick.

        Lowering the cap never interrupts active jobs; admission pauses
        until enough of them finish or move on to monitoring.
        """
        if not 1 <= value <= self.max_concurrency:
            raise InvalidConfigError(
                f"concurrency must be between 1 and {self.max_concurrency}, got {value}"
            )
        self._concurrency = value
        self._logger.info(f"Concurrency set to {value}")

    def start(self) -> None:
        """Admit queued jobs from the next tick on."""
        self._accepting = True
        self._logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop admitting queued jobs. In-flight jobs still run to the end."""
        self._accepting = False
        self._logger.info("Scheduler stopped; in-flight jobs continue")

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def tick(self) -> TickReport:
        """Admit, advance and report, once."""
        self._guard_tick("start a tick")
        self._ticking = True
        report = TickReport()
        try:
            now = self._clock()
            free = self._concurrency - self.active_count
            if self._accepting and free > 0:
                for job in self.queued()[:free]:
                    self._admit(job, now)
                    report.admitted.append(job.job_id)

            for job in list(self._jobs.values()):
                if not self.poll_clock.is_due(job, self._clock()):
                    continue
                await self._process(job)
                report.processed.append(job.job_id)

            for job_id in report.processed:
                job = self._jobs[job_id]
                if job.status.is_terminal and job_id not in self._reported:
                    self._reported.add(job_id)
                    report.completed.append(job_id)
                    self.observers.on_job_completed(job)
        finally:
            self._ticking = False
        return report

    def _admit(self, job: JobRecord, now: float) -> None:
        job.status = JobStatus.ACTIVE
        job.stage = Stage.GETTING_USER_INFO
        job.start_time = now
        job.stage_start_time = now
        job.last_poll_time = None
        job.validate()
        with self._logger.job_context(job):
            self._logger.info("Job started", queue_order=job.queue_order)
        self.observers.on_job_changed(job)

    async def _process(self, job: JobRecord) -> None:
        now = self._clock()
        events: list[StageEvent] = []
        with self._logger.job_context(job):
            try:
                await self.engine.advance(job, now, events)
            except Exception as exc:
                if not isinstance(exc, MigrationError):
                    self._logger.log_error(exc, "Unexpected error while advancing job")
                events.append(self.engine.fail(job, exc, now))
            for event in events:
                self._emit(event, job)
        self.observers.on_job_changed(job)

    def _emit(self, event: StageEvent, job: JobRecord) -> None:
        self._logger.log_event(event)
        self.observers.on_log(event.level, event.message, job)

    async def run_until_idle(
        self,
        *,
        interval: float | None = None,
        max_ticks: int | None = None,
    ) -> int:
        """Tick until no work is left.

        Args:
            interval: Seconds between ticks; defaults to the configured
                tick interval
            max_ticks: Stop after this many ticks even if work remains

        Returns:
            Number of ticks run
        """
        delay = self.settings.scheduler.tick_interval_seconds if interval is None else interval
        ticks = 0
        while self.has_pending_work:
            await self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            if self.has_pending_work:
                await asyncio.sleep(delay)
        return ticks


__all__ = ["ReorderDirection", "TickReport", "MigrationScheduler"]
