"""
Job types for the migration orchestrator.

This module defines the Stage and JobStatus enums, the stage transition
graph, and the JobRecord dataclass that carries the state of one
(user, source group, target group) migration.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import InvalidJobStateError, SameGroupError
from ..hashing import job_key
from ..resources import ResourceSnapshot


class Stage(str, Enum):
    """Lifecycle stages, in protocol order.

    Permitted transitions are listed in VALID_STAGE_TRANSITIONS. The only
    skips are the "already deprovisioning" shortcut from the grace-period
    stages and the "already gone" shortcut straight to ADDING_TO_TARGET.
    """
    GETTING_USER_INFO = "getting_user_info"
    GETTING_CURRENT_RESOURCE = "getting_current_resource"
    REMOVING_FROM_SOURCE = "removing_from_source"
    WAITING_FOR_GRACE_PERIOD = "waiting_for_grace_period"
    ENDING_GRACE_PERIOD = "ending_grace_period"
    WAITING_FOR_DEPROVISION = "waiting_for_deprovision"
    ADDING_TO_TARGET = "adding_to_target"
    WAITING_FOR_PROVISIONING = "waiting_for_provisioning"
    COMPLETE = "complete"

    @property
    def is_immediate(self) -> bool:
        """Immediate stages are due on every tick."""
        return self in IMMEDIATE_STAGES

    @property
    def is_waiting(self) -> bool:
        return self in WAITING_STAGES


IMMEDIATE_STAGES = frozenset({
    Stage.GETTING_USER_INFO,
    Stage.GETTING_CURRENT_RESOURCE,
    Stage.REMOVING_FROM_SOURCE,
    Stage.ADDING_TO_TARGET,
})

WAITING_STAGES = frozenset({
    Stage.WAITING_FOR_GRACE_PERIOD,
    Stage.ENDING_GRACE_PERIOD,
    Stage.WAITING_FOR_DEPROVISION,
    Stage.WAITING_FOR_PROVISIONING,
})

# Stages that consume a concurrency slot
ACTIVE_STAGES = frozenset({
    Stage.GETTING_USER_INFO,
    Stage.GETTING_CURRENT_RESOURCE,
    Stage.REMOVING_FROM_SOURCE,
    Stage.WAITING_FOR_GRACE_PERIOD,
    Stage.ENDING_GRACE_PERIOD,
    Stage.WAITING_FOR_DEPROVISION,
    Stage.ADDING_TO_TARGET,
})

# Stages during which the tracked set must be non-empty until the identity reset
TRACKING_STAGES = frozenset({
    Stage.REMOVING_FROM_SOURCE,
    Stage.WAITING_FOR_GRACE_PERIOD,
    Stage.ENDING_GRACE_PERIOD,
    Stage.WAITING_FOR_DEPROVISION,
    Stage.ADDING_TO_TARGET,
    Stage.WAITING_FOR_PROVISIONING,
})

VALID_STAGE_TRANSITIONS: dict[Stage, set[Stage]] = {
    Stage.GETTING_USER_INFO: {Stage.GETTING_CURRENT_RESOURCE},
    Stage.GETTING_CURRENT_RESOURCE: {Stage.REMOVING_FROM_SOURCE},
    Stage.REMOVING_FROM_SOURCE: {Stage.WAITING_FOR_GRACE_PERIOD},
    Stage.WAITING_FOR_GRACE_PERIOD: {
        Stage.ENDING_GRACE_PERIOD,
        Stage.WAITING_FOR_DEPROVISION,
        Stage.ADDING_TO_TARGET,
    },
    Stage.ENDING_GRACE_PERIOD: {
        Stage.WAITING_FOR_DEPROVISION,
        Stage.ADDING_TO_TARGET,
    },
    Stage.WAITING_FOR_DEPROVISION: {Stage.ADDING_TO_TARGET},
    Stage.ADDING_TO_TARGET: {Stage.WAITING_FOR_PROVISIONING},
    Stage.WAITING_FOR_PROVISIONING: {Stage.COMPLETE},
    Stage.COMPLETE: set(),
}


class JobStatus(str, Enum):
    """Job execution status.

    QUEUED jobs wait for admission. ACTIVE jobs hold a concurrency slot;
    MONITORING jobs only poll for provisioning and hold none.
    """
    QUEUED = "queued"
    ACTIVE = "active"
    MONITORING = "monitoring"
    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success_with_warnings"
    WARNING = "warning"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in {
            JobStatus.SUCCESS,
            JobStatus.SUCCESS_WITH_WARNINGS,
            JobStatus.WARNING,
            JobStatus.FAILED,
        }

    @property
    def is_in_flight(self) -> bool:
        """Check if the stage engine is driving the job."""
        return self in {JobStatus.ACTIVE, JobStatus.MONITORING}


@dataclass(frozen=True)
class StageEvent:
    """A log event produced while advancing a job."""
    level: int
    message: str
    event_type: str = "stage"
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def debug(cls, message: str, event_type: str = "stage", **data: Any) -> StageEvent:
        return cls(logging.DEBUG, message, event_type, data)

    @classmethod
    def info(cls, message: str, event_type: str = "stage", **data: Any) -> StageEvent:
        return cls(logging.INFO, message, event_type, data)

    @classmethod
    def warning(cls, message: str, event_type: str = "stage", **data: Any) -> StageEvent:
        return cls(logging.WARNING, message, event_type, data)

    @classmethod
    def error(cls, message: str, event_type: str = "error", **data: Any) -> StageEvent:
        return cls(logging.ERROR, message, event_type, data)


# =============================================================================
# Job Record
# =============================================================================


@dataclass
class MigrationRequest:
    """What the caller asks for: move one user from one group to another."""
    user_principal_name: str
    source_group_id: str
    target_group_id: str
    source_group_name: str | None = None
    target_group_name: str | None = None
    user_id: str | None = None


@dataclass
class JobRecord:
    """In-memory record of one migration job.

    Mutated only by the scheduler (admission, ordering) and the stage
    engine (stage, status and tracking fields).
    """
    # Identity
    user_principal_name: str
    source_group_id: str
    target_group_id: str
    source_group_name: str | None = None
    target_group_name: str | None = None
    user_id: str | None = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Cached lookups, resolved once
    source_policy_ids: set[str] | None = None
    target_policy_ids: set[str] | None = None

    # Execution state
    stage: Stage = Stage.GETTING_USER_INFO
    status: JobStatus = JobStatus.QUEUED
    queue_order: int = 0

    # Timestamps (epoch seconds)
    created_at: float = field(default_factory=time.time)
    start_time: float | None = None
    end_time: float | None = None
    stage_start_time: float | None = None
    last_poll_time: float | None = None
    # Throttled by the remote side; not polled again before this time
    retry_not_before: float | None = None

    # Resource tracking
    tracked_resource_ids: set[str] = field(default_factory=set)
    seen_deprovisioning_ids: set[str] = field(default_factory=set)
    grace_ended_ids: set[str] = field(default_factory=set)
    old_resources: list[ResourceSnapshot] = field(default_factory=list)
    new_resources: list[ResourceSnapshot] = field(default_factory=list)
    tracking_cleared: bool = False
    anomaly_count: int = 0

    # Messaging
    error_message: str | None = None
    final_message: str | None = None

    def __post_init__(self):
        self.validate()

    @classmethod
    def create(cls, request: MigrationRequest) -> JobRecord:
        """Build a queued job from a request."""
        return cls(
            user_principal_name=request.user_principal_name,
            source_group_id=request.source_group_id,
            target_group_id=request.target_group_id,
            source_group_name=request.source_group_name,
            target_group_name=request.target_group_name,
            user_id=request.user_id,
        )

    @property
    def job_key(self) -> str:
        return job_key(self.user_principal_name, self.source_group_id, self.target_group_id)

    @property
    def source_group(self) -> str:
        return self.source_group_name or self.source_group_id

    @property
    def target_group(self) -> str:
        return self.target_group_name or self.target_group_id

    @property
    def message(self) -> str | None:
        """The human-readable outcome message, error first."""
        return self.error_message or self.final_message

    def validate(self) -> None:
        """Reject illegal field combinations.

        Raises:
            SameGroupError: If source and target group are identical
            InvalidJobStateError: If status, stage and tracking fields disagree
        """
        if self.source_group_id == self.target_group_id:
            raise SameGroupError(self.source_group_id)

        status, stage = self.status, self.stage

        if status == JobStatus.QUEUED and stage != Stage.GETTING_USER_INFO:
            raise InvalidJobStateError(f"Queued job cannot be in stage {stage.value}")
        if status == JobStatus.ACTIVE and stage not in ACTIVE_STAGES:
            raise InvalidJobStateError(f"Active job cannot be in stage {stage.value}")
        if status == JobStatus.MONITORING and stage != Stage.WAITING_FOR_PROVISIONING:
            raise InvalidJobStateError(f"Monitoring job cannot be in stage {stage.value}")
        if status in (JobStatus.SUCCESS, JobStatus.SUCCESS_WITH_WARNINGS) and stage != Stage.COMPLETE:
            raise InvalidJobStateError(f"Successful job must be in stage complete, not {stage.value}")
        if stage == Stage.COMPLETE and status not in (JobStatus.SUCCESS, JobStatus.SUCCESS_WITH_WARNINGS):
            raise InvalidJobStateError(f"Completed job cannot have status {status.value}")

        if status.is_terminal and self.end_time is None:
            raise InvalidJobStateError(f"Terminal job ({status.value}) has no end time")
        if not status.is_terminal and self.end_time is not None:
            raise InvalidJobStateError(f"Non-terminal job ({status.value}) has an end time")

        if (
            status.is_in_flight
            and stage in TRACKING_STAGES
            and not self.tracked_resource_ids
            and not self.tracking_cleared
        ):
            raise InvalidJobStateError(
                f"Job in stage {stage.value} has no tracked resources before identity reset"
            )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "job_id": self.job_id,
            "user_principal_name": self.user_principal_name,
            "user_id": self.user_id,
            "source_group_id": self.source_group_id,
            "source_group_name": self.source_group_name,
            "target_group_id": self.target_group_id,
            "target_group_name": self.target_group_name,
            "source_policy_ids": sorted(self.source_policy_ids) if self.source_policy_ids is not None else None,
            "target_policy_ids": sorted(self.target_policy_ids) if self.target_policy_ids is not None else None,
            "stage": self.stage.value,
            "status": self.status.value,
            "queue_order": self.queue_order,
            "created_at": self.created_at,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "stage_start_time": self.stage_start_time,
            "last_poll_time": self.last_poll_time,
            "retry_not_before": self.retry_not_before,
            "tracked_resource_ids": sorted(self.tracked_resource_ids),
            "seen_deprovisioning_ids": sorted(self.seen_deprovisioning_ids),
            "grace_ended_ids": sorted(self.grace_ended_ids),
            "old_resources": [r.to_dict() for r in self.old_resources],
            "new_resources": [r.to_dict() for r in self.new_resources],
            "tracking_cleared": self.tracking_cleared,
            "anomaly_count": self.anomaly_count,
            "error_message": self.error_message,
            "final_message": self.final_message,
        }


# =============================================================================
# Summary Record
# =============================================================================


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class JobSummary:
    """Row emitted once per terminal job for export hooks."""
    job_id: str
    user: str
    source_group: str
    old_resource_name: str
    target_group: str
    new_resource_name: str
    status: JobStatus
    stage: Stage
    start_time: float | None
    end_time: float | None
    message: str

    @classmethod
    def from_job(cls, job: JobRecord) -> JobSummary:
        return cls(
            job_id=job.job_id,
            user=job.user_principal_name,
            source_group=job.source_group,
            old_resource_name="; ".join(r.name for r in job.old_resources),
            target_group=job.target_group,
            new_resource_name="; ".join(r.name for r in job.new_resources),
            status=job.status,
            stage=job.stage,
            start_time=job.start_time,
            end_time=job.end_time,
            message=job.message or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "user": self.user,
            "source_group": self.source_group,
            "old_resource_name": self.old_resource_name,
            "target_group": self.target_group,
            "new_resource_name": self.new_resource_name,
            "status": self.status.value,
            "stage": self.stage.value,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "message": self.message,
        }


__all__ = [
    "Stage",
    "JobStatus",
    "IMMEDIATE_STAGES",
    "WAITING_STAGES",
    "ACTIVE_STAGES",
    "TRACKING_STAGES",
    "VALID_STAGE_TRANSITIONS",
    "StageEvent",
    "MigrationRequest",
    "JobRecord",
    "JobSummary",
]
