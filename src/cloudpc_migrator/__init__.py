"""
Top-level package for cloudpc-migrator.

Moves users between Cloud PC provisioning groups: removes them from the
source group, waits for the old Cloud PC to be deprovisioned, adds them to
the target group and waits for the replacement to be provisioned.
"""

from .config import Settings, load_env
from .errors import (
    ErrorCode,
    ErrorContext,
    GatewayError,
    JobError,
    MigrationError,
    ValidationError,
    is_retryable,
)
from .gateway import GraphGateway, InMemoryGateway, MembershipResult, ResourceGateway
from .jobs import (
    InMemoryObserver,
    JobObserver,
    JobRecord,
    JobStatus,
    JobSummary,
    MigrationRequest,
    MigrationScheduler,
    ReorderDirection,
    Stage,
    StageEngine,
    SummaryCollector,
    TickReport,
)
from .logging import StructuredLogger, create_logger
from .resources import ResourceInfo, ResourceSnapshot, ResourceStatus
from .sync import run_until_idle_sync, tick_sync

__version__ = "0.1.0"

__all__ = [
    # Scheduling
    "MigrationScheduler",
    "MigrationRequest",
    "ReorderDirection",
    "TickReport",
    "StageEngine",
    "JobRecord",
    "JobStatus",
    "JobSummary",
    "Stage",
    # Observers
    "JobObserver",
    "InMemoryObserver",
    "SummaryCollector",
    # Gateways
    "ResourceGateway",
    "InMemoryGateway",
    "GraphGateway",
    "MembershipResult",
    "ResourceInfo",
    "ResourceSnapshot",
    "ResourceStatus",
    # Errors
    "ErrorCode",
    "ErrorContext",
    "MigrationError",
    "ValidationError",
    "GatewayError",
    "JobError",
    "is_retryable",
    # Config and logging
    "Settings",
    "load_env",
    "StructuredLogger",
    "create_logger",
    # Sync wrappers
    "tick_sync",
    "run_until_idle_sync",
]
