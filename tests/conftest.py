"""
Shared test fixtures for cloudpc-migrator tests.

This module provides:
- A controllable fake clock
- An in-memory gateway seeded with one user, a source group and a target group
- A scheduler factory wired to the fake clock and a recording observer
- Job factories for driving the stage engine directly
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from cloudpc_migrator.config import Settings
from cloudpc_migrator.gateway import InMemoryGateway
from cloudpc_migrator.jobs import (
    InMemoryObserver,
    JobRecord,
    JobStatus,
    MigrationRequest,
    MigrationScheduler,
    PollClock,
    Stage,
    StageEngine,
)
from cloudpc_migrator.resources import ResourceSnapshot, ResourceStatus

USER = "ada@contoso.com"
USER_ID = "u1"
SOURCE_GROUP = "grp-source"
SOURCE_POLICY = "pol-source"
TARGET_GROUP = "grp-target"
TARGET_POLICY = "pol-target"
OLD_RESOURCE = "R1"

START = 1_700_000_000.0


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Epoch-seconds clock moved by hand."""

    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Gateway
# =============================================================================


def seed_user(
    gateway: InMemoryGateway,
    upn: str,
    user_id: str,
    resource_id: str,
    *,
    service_plan: str = "plan1",
) -> None:
    """Register a user who owns one provisioned resource from the source policy."""
    gateway.add_user(upn, user_id)
    gateway.add_member(SOURCE_GROUP, user_id)
    gateway.add_resource(
        user_id,
        resource_id,
        name=f"CPC-{resource_id}",
        status=ResourceStatus.PROVISIONED,
        service_plan=service_plan,
        policy_id=SOURCE_POLICY,
    )


@pytest.fixture
def gateway() -> InMemoryGateway:
    gw = InMemoryGateway()
    gw.assign_policy(SOURCE_GROUP, SOURCE_POLICY)
    gw.assign_policy(TARGET_GROUP, TARGET_POLICY)
    seed_user(gw, USER, USER_ID, OLD_RESOURCE)
    return gw


class AutoGateway(InMemoryGateway):
    """In-memory gateway whose membership changes take effect at once.

    Removing a user from a group deletes their resources; adding them
    provisions one replacement under the target policy unless
    ``provision`` is off.
    """

    def __init__(self, *, provision: bool = True):
        super().__init__()
        self.provision = provision

    async def remove_membership(self, user_id, group_id):
        result = await super().remove_membership(user_id, group_id)
        for resource in self.resources(user_id):
            self.remove_resource(resource.id)
        return result

    async def add_membership(self, user_id, group_id):
        result = await super().add_membership(user_id, group_id)
        if self.provision:
            self.add_resource(
                user_id,
                f"{user_id}-new",
                service_plan="plan1",
                policy_id=TARGET_POLICY,
            )
        return result


@pytest.fixture
def make_auto_gateway():
    """Factory for AutoGateway instances seeded with the default user."""

    def _make(*, provision: bool = True, users: int = 1) -> AutoGateway:
        gw = AutoGateway(provision=provision)
        gw.assign_policy(SOURCE_GROUP, SOURCE_POLICY)
        gw.assign_policy(TARGET_GROUP, TARGET_POLICY)
        seed_user(gw, USER, USER_ID, OLD_RESOURCE)
        for n in range(2, users + 1):
            seed_user(gw, f"user{n}@contoso.com", f"u{n}", f"R{n}")
        return gw

    return _make


@pytest.fixture
def add_user(gateway):
    """Register another user with one provisioned source resource."""

    def _add(upn: str, user_id: str, resource_id: str, **kwargs) -> None:
        seed_user(gateway, upn, user_id, resource_id, **kwargs)

    return _add


# =============================================================================
# Scheduler
# =============================================================================


@pytest.fixture
def observer() -> InMemoryObserver:
    return InMemoryObserver()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def make_scheduler(gateway, settings, observer, clock) -> Callable[..., MigrationScheduler]:
    """Factory for schedulers sharing the test's gateway, clock and observer."""

    def _make(**kwargs) -> MigrationScheduler:
        kwargs.setdefault("observers", [observer])
        kwargs.setdefault("clock", clock)
        return MigrationScheduler(kwargs.pop("gateway", gateway), kwargs.pop("settings", settings), **kwargs)

    return _make


@pytest.fixture
def scheduler(make_scheduler) -> MigrationScheduler:
    return make_scheduler()


@pytest.fixture
def migration_request() -> MigrationRequest:
    return MigrationRequest(
        user_principal_name=USER,
        source_group_id=SOURCE_GROUP,
        target_group_id=TARGET_GROUP,
        source_group_name="Cloud PC - Standard",
        target_group_name="Cloud PC - Premium",
    )


@pytest.fixture
def drive(clock):
    """Tick a scheduler until a predicate holds, moving the clock between ticks."""

    async def _drive(
        scheduler: MigrationScheduler,
        until: Callable[[], bool],
        *,
        step: float = 60.0,
        max_ticks: int = 200,
    ) -> int:
        for ticks in range(max_ticks):
            if until():
                return ticks
            await scheduler.tick()
            clock.advance(step)
        raise AssertionError(f"condition not reached after {max_ticks} ticks")

    return _drive


# =============================================================================
# Stage Engine
# =============================================================================


@pytest.fixture
def engine(gateway) -> StageEngine:
    return StageEngine(gateway, PollClock())


@pytest.fixture
def make_job():
    """Factory for jobs placed directly in a given stage."""

    def _make(
        stage: Stage = Stage.GETTING_USER_INFO,
        *,
        status: JobStatus | None = None,
        tracked: set[str] | None = None,
        old: list[ResourceSnapshot] | None = None,
        started: float = START,
        **kwargs,
    ) -> JobRecord:
        if status is None:
            status = JobStatus.MONITORING if stage == Stage.WAITING_FOR_PROVISIONING else JobStatus.ACTIVE
        if tracked is None:
            tracked = {OLD_RESOURCE} if stage != Stage.WAITING_FOR_PROVISIONING else set()
        kwargs.setdefault("tracking_cleared", stage == Stage.WAITING_FOR_PROVISIONING)
        kwargs.setdefault("user_id", USER_ID)
        kwargs.setdefault("start_time", started)
        kwargs.setdefault("stage_start_time", started)
        return JobRecord(
            user_principal_name=USER,
            source_group_id=SOURCE_GROUP,
            target_group_id=TARGET_GROUP,
            stage=stage,
            status=status,
            tracked_resource_ids=set(tracked),
            old_resources=old if old is not None else [ResourceSnapshot(OLD_RESOURCE, "CPC-R1", "plan1")],
            **kwargs,
        )

    return _make
