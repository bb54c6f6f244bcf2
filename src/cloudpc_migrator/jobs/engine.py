"""
Stage engine for migration jobs.

This module advances one job by one stage step per call. It implements the
lifecycle protocol:

    getting_user_info -> getting_current_resource -> removing_from_source
    -> waiting_for_grace_period -> ending_grace_period -> waiting_for_deprovision
    -> adding_to_target -> waiting_for_provisioning -> complete

with two shortcuts out of the grace-period stages: straight to
waiting_for_deprovision when a tracked resource is already deprovisioning,
and straight to adding_to_target when every tracked resource is gone.

The remote status feed is eventually consistent. A resource seen
deprovisioning that later reads inGracePeriod again is a stale read: it is
still counted as deprovisioning and reported as an anomaly event.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from ..errors import (
    ErrorContext,
    GatewayError,
    GatewayRateLimitError,
    InvalidJobStateError,
    MembershipChangeError,
    MigrationError,
    NoMatchingResourceError,
    NoTargetPolicyError,
    ProvisioningFailureError,
    StageTimeoutError,
    UserNotFoundError,
)
from ..gateway.base import ResourceGateway
from ..resources import ResourceInfo, ResourceStatus
from .clock import PollClock
from .pairing import is_complete, missing_plans, select_new_resources
from .types import VALID_STAGE_TRANSITIONS, JobRecord, JobStatus, Stage, StageEvent

StageHandler = Callable[[JobRecord, float, list[StageEvent]], Awaitable[None]]


class StageEngine:
    """Advances jobs through the migration lifecycle.

    The engine never catches fatal errors: it raises them to the caller,
    which marks the job failed via ``fail()``. Retryable gateway errors
    leave the job unchanged so the next due tick retries.
    """

    def __init__(self, gateway: ResourceGateway, clock: PollClock | None = None) -> None:
        self.gateway = gateway
        self.clock = clock or PollClock()
        self._handlers: dict[Stage, StageHandler] = {
            Stage.GETTING_USER_INFO: self._get_user_info,
            Stage.GETTING_CURRENT_RESOURCE: self._get_current_resource,
            Stage.REMOVING_FROM_SOURCE: self._remove_from_source,
            Stage.WAITING_FOR_GRACE_PERIOD: self._wait_for_grace_period,
            Stage.ENDING_GRACE_PERIOD: self._end_grace_period,
            Stage.WAITING_FOR_DEPROVISION: self._wait_for_deprovision,
            Stage.ADDING_TO_TARGET: self._add_to_target,
            Stage.WAITING_FOR_PROVISIONING: self._wait_for_provisioning,
        }

    async def advance(
        self,
        job: JobRecord,
        now: float,
        events: list[StageEvent] | None = None,
    ) -> list[StageEvent]:
        """Process the job's current stage once.

        Args:
            job: The job to advance
            now: Current time, epoch seconds
            events: Optional list that receives log events as they occur,
                so events survive a step that raises

        Returns:
            Log events produced during the step

        Raises:
            MigrationError: On any fatal condition; the job is left for the
                caller to fail
        """
        if not job.status.is_in_flight:
            raise InvalidJobStateError(
                f"Cannot advance job in status {job.status.value}",
                context=self._context(job),
            )
        handler = self._handlers.get(job.stage)
        if handler is None:
            raise InvalidJobStateError(
                f"No handler for stage {job.stage.value}",
                context=self._context(job),
            )

        if events is None:
            events = []
        job.last_poll_time = now
        job.retry_not_before = None
        try:
            await handler(job, now, events)
        except GatewayError as exc:
            if not exc.retryable:
                raise
            retry_after = exc.retry_after if isinstance(exc, GatewayRateLimitError) else None
            if retry_after:
                job.retry_not_before = now + retry_after
            events.append(StageEvent.warning(
                f"Gateway call failed, retrying on next poll: {exc.message}",
                event_type="retry",
                error_code=exc.code.value,
                retry_after=retry_after,
            ))
            self._check_timeout(job, now, events)
        job.validate()
        return events

    def fail(self, job: JobRecord, error: BaseException, now: float) -> StageEvent:
        """Mark a job failed after an error escaped ``advance``."""
        if isinstance(error, MigrationError):
            message = error.message
        else:
            message = f"{type(error).__name__}: {error}"
        job.status = JobStatus.FAILED
        job.error_message = message
        if job.end_time is None:
            job.end_time = now
        return StageEvent.error(
            f"Job failed in stage {job.stage.value}: {message}",
            error_type=type(error).__name__,
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _enter_stage(self, job: JobRecord, stage: Stage, now: float, events: list[StageEvent]) -> None:
        if stage not in VALID_STAGE_TRANSITIONS[job.stage]:
            raise InvalidJobStateError(
                f"Invalid stage transition: {job.stage.value} -> {stage.value}",
                context=self._context(job),
            )
        events.append(StageEvent.info(
            f"Stage {job.stage.value} -> {stage.value}",
            event_type="transition",
            from_stage=job.stage.value,
            to_stage=stage.value,
        ))
        job.stage = stage
        job.stage_start_time = now
        job.last_poll_time = None

    def _finish(self, job: JobRecord, status: JobStatus, now: float, message: str) -> None:
        if job.status.is_terminal:
            raise InvalidJobStateError(
                f"Job already finished with status {job.status.value}",
                context=self._context(job),
            )
        job.status = status
        job.final_message = message
        job.end_time = now

    def _reset_tracking(self, job: JobRecord, events: list[StageEvent]) -> None:
        # Anything observed from here on counts as a new resource, even a reused id
        job.tracked_resource_ids.clear()
        job.tracking_cleared = True
        events.append(StageEvent.info("All old resources confirmed gone", event_type="identity_reset"))

    def _check_timeout(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        if not self.clock.is_timed_out(job, now):
            return
        if job.stage == Stage.WAITING_FOR_PROVISIONING:
            self._soft_timeout(job, now, events)
            return
        raise StageTimeoutError(
            job.stage.value,
            self.clock.stage_elapsed(job, now),
            self.clock.timeout_for(job.stage) or 0.0,
            context=self._context(job),
        )

    def _soft_timeout(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        limit = self.clock.timeout_for(job.stage) or 0.0
        message = (
            f"New resource not confirmed within {limit / 60:.0f} minutes. "
            "Provisioning may still complete; check the target group's resources manually."
        )
        events.append(StageEvent.warning(message, event_type="soft_timeout"))
        self._finish(job, JobStatus.WARNING, now, message)

    @staticmethod
    def _context(job: JobRecord, **kwargs) -> ErrorContext:
        return ErrorContext(
            job_id=job.job_id,
            user=job.user_principal_name,
            stage=job.stage.value,
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Immediate stages
    # -------------------------------------------------------------------------

    async def _get_user_info(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        if not job.user_id:
            user_id = await self.gateway.get_user_id(job.user_principal_name)
            if not user_id:
                raise UserNotFoundError(job.user_principal_name, context=self._context(job))
            job.user_id = user_id
            events.append(StageEvent.info(f"Resolved user {job.user_principal_name}", user_id=user_id))
        self._enter_stage(job, Stage.GETTING_CURRENT_RESOURCE, now, events)

    async def _get_current_resource(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        if job.source_policy_ids is None:
            job.source_policy_ids = await self.gateway.list_policies_for_group(job.source_group_id)
        if not job.source_policy_ids:
            raise NoMatchingResourceError(
                f"Source group {job.source_group} has no provisioning policy assigned",
                context=self._context(job),
            )

        resources = await self.gateway.list_resources_for_user(job.user_id)
        matching = [r for r in resources if r.policy_id in job.source_policy_ids]
        if not matching:
            raise NoMatchingResourceError(
                f"No resource of {job.user_principal_name} belongs to a provisioning "
                f"policy of source group {job.source_group}",
                context=self._context(job),
            )

        job.old_resources = [r.snapshot() for r in matching]
        job.tracked_resource_ids = {r.id for r in matching}
        events.append(StageEvent.info(
            f"Tracking {len(matching)} resource(s): {', '.join(r.name for r in matching)}",
            resource_ids=sorted(job.tracked_resource_ids),
        ))
        self._enter_stage(job, Stage.REMOVING_FROM_SOURCE, now, events)

    async def _remove_from_source(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        try:
            result = await self.gateway.remove_membership(job.user_id, job.source_group_id)
        except GatewayError as exc:
            raise MembershipChangeError(
                f"Failed to remove {job.user_principal_name} from {job.source_group}: {exc.message}",
                context=self._context(job, operation="remove_membership"),
                cause=exc,
            ) from exc
        events.append(StageEvent.info(
            f"Removed from source group {job.source_group} ({result.value})",
            event_type="membership",
        ))
        self._enter_stage(job, Stage.WAITING_FOR_GRACE_PERIOD, now, events)

    async def _add_to_target(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        try:
            result = await self.gateway.add_membership(job.user_id, job.target_group_id)
        except GatewayError as exc:
            raise MembershipChangeError(
                f"Failed to add {job.user_principal_name} to {job.target_group}: {exc.message}",
                context=self._context(job, operation="add_membership"),
                cause=exc,
            ) from exc
        events.append(StageEvent.info(
            f"Added to target group {job.target_group} ({result.value})",
            event_type="membership",
        ))
        self._enter_stage(job, Stage.WAITING_FOR_PROVISIONING, now, events)
        job.status = JobStatus.MONITORING

    # -------------------------------------------------------------------------
    # Deprovision wait stages
    # -------------------------------------------------------------------------

    async def _poll_tracked(self, job: JobRecord) -> dict[str, ResourceInfo]:
        """Current state of the tracked resources still listed for the user."""
        resources = await self.gateway.list_resources_for_user(job.user_id)
        return {r.id: r for r in resources if r.id in job.tracked_resource_ids}

    @staticmethod
    def _remember_deprovisioning(job: JobRecord, present: dict[str, ResourceInfo]) -> None:
        for resource in present.values():
            if resource.status == ResourceStatus.DEPROVISIONING:
                job.seen_deprovisioning_ids.add(resource.id)

    async def _request_grace_end(self, job: JobRecord, resource_id: str, events: list[StageEvent]) -> None:
        try:
            await self.gateway.end_grace_period(resource_id)
            events.append(StageEvent.info(
                f"Requested grace period end for {resource_id}",
                event_type="grace_end",
                resource_id=resource_id,
            ))
        except GatewayError as exc:
            events.append(StageEvent.warning(
                f"Could not end grace period for {resource_id}: {exc.message}",
                event_type="grace_end",
                resource_id=resource_id,
            ))
        job.grace_ended_ids.add(resource_id)

    async def _wait_for_grace_period(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        present = await self._poll_tracked(job)
        self._remember_deprovisioning(job, present)

        if not present:
            self._reset_tracking(job, events)
            self._enter_stage(job, Stage.ADDING_TO_TARGET, now, events)
            return
        if any(r.status.is_past_grace for r in present.values()):
            self._enter_stage(job, Stage.WAITING_FOR_DEPROVISION, now, events)
            return
        if all(r.status == ResourceStatus.IN_GRACE_PERIOD for r in present.values()):
            self._enter_stage(job, Stage.ENDING_GRACE_PERIOD, now, events)
            return
        self._check_timeout(job, now, events)

    async def _end_grace_period(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        present = await self._poll_tracked(job)
        self._remember_deprovisioning(job, present)

        for resource_id in sorted(present):
            if (
                present[resource_id].status == ResourceStatus.IN_GRACE_PERIOD
                and resource_id not in job.grace_ended_ids
                and resource_id not in job.seen_deprovisioning_ids
            ):
                await self._request_grace_end(job, resource_id, events)

        if not present:
            self._reset_tracking(job, events)
            self._enter_stage(job, Stage.ADDING_TO_TARGET, now, events)
            return
        if any(r.status.is_past_grace for r in present.values()):
            self._enter_stage(job, Stage.WAITING_FOR_DEPROVISION, now, events)
            return
        self._check_timeout(job, now, events)

    async def _wait_for_deprovision(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        present = await self._poll_tracked(job)
        done = True

        for resource_id in sorted(job.tracked_resource_ids):
            resource = present.get(resource_id)
            if resource is None or resource.status == ResourceStatus.NOT_PROVISIONED:
                continue
            done = False
            if resource.status == ResourceStatus.DEPROVISIONING:
                job.seen_deprovisioning_ids.add(resource_id)
            elif resource.status == ResourceStatus.IN_GRACE_PERIOD:
                if resource_id in job.seen_deprovisioning_ids:
                    job.anomaly_count += 1
                    events.append(StageEvent.warning(
                        f"Resource {resource.name} reported inGracePeriod after deprovisioning; "
                        "treating as a stale read",
                        event_type="anomaly",
                        resource_id=resource_id,
                    ))
                elif resource_id not in job.grace_ended_ids:
                    await self._request_grace_end(job, resource_id, events)

        if done:
            self._reset_tracking(job, events)
            self._enter_stage(job, Stage.ADDING_TO_TARGET, now, events)
            return
        self._check_timeout(job, now, events)

    # -------------------------------------------------------------------------
    # Provisioning wait
    # -------------------------------------------------------------------------

    async def _wait_for_provisioning(self, job: JobRecord, now: float, events: list[StageEvent]) -> None:
        if job.target_policy_ids is None:
            job.target_policy_ids = await self.gateway.list_policies_for_group(job.target_group_id)
        if not job.target_policy_ids:
            raise NoTargetPolicyError(
                f"Target group {job.target_group} has no provisioning policy assigned",
                context=self._context(job),
            )

        resources = await self.gateway.list_resources_for_user(job.user_id)
        candidates = [r for r in resources if r.policy_id in job.target_policy_ids]

        failed = [r for r in candidates if r.status == ResourceStatus.FAILED]
        if failed:
            raise ProvisioningFailureError(
                f"Provisioning failed for {', '.join(r.name for r in failed)}",
                context=self._context(job, resource_id=failed[0].id),
            )

        ready = [r for r in candidates if r.status.is_ready]
        if is_complete(job.old_resources, ready):
            paired = select_new_resources(job.old_resources, ready)
            job.new_resources = [r.snapshot() for r in paired]
            with_warnings = any(r.status == ResourceStatus.PROVISIONED_WITH_WARNINGS for r in paired)
            self._enter_stage(job, Stage.COMPLETE, now, events)
            names = ", ".join(r.name for r in paired)
            if with_warnings:
                self._finish(job, JobStatus.SUCCESS_WITH_WARNINGS, now, f"Provisioned with warnings: {names}")
            else:
                self._finish(job, JobStatus.SUCCESS, now, f"Provisioned: {names}")
            return

        events.append(StageEvent.debug(
            "Waiting for new resources",
            event_type="poll",
            missing={str(plan): count for plan, count in missing_plans(job.old_resources, ready).items()},
        ))
        self._check_timeout(job, now, events)
        if job.status == JobStatus.WARNING:
            job.new_resources = [r.snapshot() for r in select_new_resources(job.old_resources, ready)]


__all__ = ["StageEngine"]
