"""
Poll clock: per-job due/not-due decisions and stage timeout bookkeeping.
"""

from __future__ import annotations

from ..config.scheduler import PollIntervals, StageTimeouts
from .types import JobRecord, Stage


class PollClock:
    """Decides when a job is due and whether its stage has timed out.

    Immediate stages are always due. Waiting stages are due once their
    interval has elapsed since the last poll, or straight away when the
    stage has not been polled yet. A job throttled by the remote side is
    not due before its retry time. Stage elapsed time is measured from
    ``stage_start_time``.
    """

    def __init__(
        self,
        intervals: PollIntervals | None = None,
        timeouts: StageTimeouts | None = None,
    ) -> None:
        self.intervals = intervals or PollIntervals()
        self.timeouts = timeouts or StageTimeouts()

    def interval_for(self, stage: Stage) -> float:
        """Seconds between polls for a stage; 0 for immediate stages."""
        if stage.is_immediate or stage == Stage.COMPLETE:
            return 0.0
        if stage == Stage.WAITING_FOR_PROVISIONING:
            return self.intervals.provisioning
        return self.intervals.waiting

    def timeout_for(self, stage: Stage) -> float | None:
        """Timeout for a stage in seconds, None if the stage never times out."""
        if stage.is_immediate:
            return self.timeouts.immediate
        return {
            Stage.WAITING_FOR_GRACE_PERIOD: self.timeouts.grace_period,
            Stage.ENDING_GRACE_PERIOD: self.timeouts.ending_grace_period,
            Stage.WAITING_FOR_DEPROVISION: self.timeouts.deprovision,
            Stage.WAITING_FOR_PROVISIONING: self.timeouts.provisioning,
        }.get(stage)

    def is_due(self, job: JobRecord, now: float) -> bool:
        if not job.status.is_in_flight:
            return False
        if job.retry_not_before is not None and now < job.retry_not_before:
            return False
        if job.stage.is_immediate or job.last_poll_time is None:
            return True
        return now - job.last_poll_time >= self.interval_for(job.stage)

    def stage_elapsed(self, job: JobRecord, now: float) -> float:
        if job.stage_start_time is None:
            return 0.0
        return max(0.0, now - job.stage_start_time)

    def is_timed_out(self, job: JobRecord, now: float) -> bool:
        limit = self.timeout_for(job.stage)
        return limit is not None and self.stage_elapsed(job, now) > limit


__all__ = ["PollClock"]
