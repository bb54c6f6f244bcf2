"""
Job system for the migration orchestrator.

This module provides the migration job lifecycle:
- JobRecord: In-memory job state
- StageEngine: Advances one job one stage step
- PollClock: Due and timeout decisions
- MigrationScheduler: Admission, ordering and the tick loop
- JobObserver: Notification interface with implementations
"""

from .clock import PollClock
from .engine import StageEngine
from .observer import (
    InMemoryObserver,
    JobObserver,
    ObserverManager,
    SummaryCollector,
)
from .pairing import (
    is_complete,
    missing_plans,
    pair_resources,
    select_new_resources,
)
from .scheduler import (
    MigrationScheduler,
    ReorderDirection,
    TickReport,
)
from .types import (
    VALID_STAGE_TRANSITIONS,
    JobRecord,
    JobStatus,
    JobSummary,
    MigrationRequest,
    Stage,
    StageEvent,
)

__all__ = [
    "Stage",
    "JobStatus",
    "JobRecord",
    "JobSummary",
    "MigrationRequest",
    "StageEvent",
    "VALID_STAGE_TRANSITIONS",
    "PollClock",
    "StageEngine",
    "MigrationScheduler",
    "ReorderDirection",
    "TickReport",
    "JobObserver",
    "ObserverManager",
    "InMemoryObserver",
    "SummaryCollector",
    "is_complete",
    "missing_plans",
    "pair_resources",
    "select_new_resources",
]
