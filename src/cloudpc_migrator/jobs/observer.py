"""
Observers for job lifecycle notifications.

This module provides:
- JobObserver: base class with no-op callbacks
- ObserverManager: synchronous broadcast to many observers
- InMemoryObserver: records every callback (testing/debugging)
- SummaryCollector: keeps one summary row per finished job for export
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .types import JobRecord, JobSummary

logger = logging.getLogger(__name__)


class JobObserver:
    """Receives scheduler notifications. Override what you need."""

    def on_log(self, level: int, message: str, job: JobRecord | None = None) -> None:
        """A log line was produced, optionally for a specific job."""

    def on_job_changed(self, job: JobRecord) -> None:
        """The job's state changed."""

    def on_job_completed(self, job: JobRecord) -> None:
        """The job reached a terminal status. Called once per job."""

    def on_job_removed(self, job: JobRecord) -> None:
        """The job was taken out of the collection."""


class ObserverManager(JobObserver):
    """Broadcasts notifications to every registered observer.

    An observer that raises is logged and skipped; the remaining observers
    and the scheduler tick carry on.
    """

    def __init__(self, observers: Iterable[JobObserver] | None = None) -> None:
        self._observers = list(observers or [])

    def add(self, observer: JobObserver) -> None:
        self._observers.append(observer)

    def remove(self, observer: JobObserver) -> None:
        self._observers.remove(observer)

    def _broadcast(self, method: str, *args: Any) -> None:
        for observer in self._observers:
            try:
                getattr(observer, method)(*args)
            except Exception:
                logger.exception("Observer %r failed in %s", observer, method)

    def on_log(self, level: int, message: str, job: JobRecord | None = None) -> None:
        self._broadcast("on_log", level, message, job)

    def on_job_changed(self, job: JobRecord) -> None:
        self._broadcast("on_job_changed", job)

    def on_job_completed(self, job: JobRecord) -> None:
        self._broadcast("on_job_completed", job)

    def on_job_removed(self, job: JobRecord) -> None:
        self._broadcast("on_job_removed", job)


class InMemoryObserver(JobObserver):
    """
    Records every notification for tests and local inspection.
    """

    def __init__(self) -> None:
        self.logs: list[tuple[int, str, str | None]] = []
        self.changes: list[tuple[str, str, str]] = []
        self.completed: list[str] = []
        self.removed: list[str] = []

    def on_log(self, level: int, message: str, job: JobRecord | None = None) -> None:
        self.logs.append((level, message, job.job_id if job else None))

    def on_job_changed(self, job: JobRecord) -> None:
        self.changes.append((job.job_id, job.status.value, job.stage.value))

    def on_job_completed(self, job: JobRecord) -> None:
        self.completed.append(job.job_id)

    def on_job_removed(self, job: JobRecord) -> None:
        self.removed.append(job.job_id)

    def stages_for(self, job_id: str) -> list[str]:
        """Distinct stages the job was seen in, in order."""
        stages: list[str] = []
        for changed_id, _, stage in self.changes:
            if changed_id == job_id and (not stages or stages[-1] != stage):
                stages.append(stage)
        return stages

    def messages(self, level: int | None = None) -> list[str]:
        return [m for lvl, m, _ in self.logs if level is None or lvl == level]

    def snapshot(self) -> dict[str, Any]:
        return {
            "logs": list(self.logs),
            "changes": list(self.changes),
            "completed": list(self.completed),
            "removed": list(self.removed),
        }


class SummaryCollector(JobObserver):
    """Collects a JobSummary row for every finished job."""

    def __init__(self) -> None:
        self.rows: list[JobSummary] = []

    def on_job_completed(self, job: JobRecord) -> None:
        self.rows.append(JobSummary.from_job(job))

    def to_dicts(self) -> list[dict[str, Any]]:
        return [row.to_dict() for row in self.rows]


__all__ = [
    "JobObserver",
    "ObserverManager",
    "InMemoryObserver",
    "SummaryCollector",
]
