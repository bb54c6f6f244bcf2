#!/usr/bin/env python3
"""
Example: Dry run against a simulated control plane

Demonstrates:
1. Building Settings programmatically with short poll intervals
2. Queueing several migrations and reordering the queue
3. Driving the scheduler with run_until_idle
4. Collecting summary rows with SummaryCollector

The simulated gateway moves each Cloud PC one step through its lifecycle
every time it is listed, so the run finishes in a couple of seconds.
"""
import asyncio
import json

from cloudpc_migrator import (
    InMemoryGateway,
    MembershipResult,
    MigrationRequest,
    MigrationScheduler,
    ResourceStatus,
    Settings,
    SummaryCollector,
)
from cloudpc_migrator.config import PollIntervals, SchedulerConfig

LIFECYCLE = {
    ResourceStatus.IN_GRACE_PERIOD: ResourceStatus.DEPROVISIONING,
    ResourceStatus.DEPROVISIONING: None,
    ResourceStatus.PROVISIONING: ResourceStatus.PROVISIONED,
}


class SimulatedGateway(InMemoryGateway):
    """Moves resources along on every listing."""

    def __init__(self, target_policy: str):
        super().__init__()
        self.target_policy = target_policy
        self._removed: set[str] = set()

    async def list_resources_for_user(self, user_id):
        resources = await super().list_resources_for_user(user_id)
        for resource in resources:
            if resource.status == ResourceStatus.PROVISIONED and user_id in self._removed:
                self.set_status(resource.id, ResourceStatus.IN_GRACE_PERIOD)
            elif resource.status in LIFECYCLE:
                following = LIFECYCLE[resource.status]
                if following is None:
                    self.remove_resource(resource.id)
                else:
                    self.set_status(resource.id, following)
        return resources

    async def remove_membership(self, user_id, group_id):
        result = await super().remove_membership(user_id, group_id)
        self._removed.add(user_id)
        return result

    async def end_grace_period(self, resource_id):
        await super().end_grace_period(resource_id)
        self.set_status(resource_id, ResourceStatus.DEPROVISIONING)

    async def add_membership(self, user_id, group_id):
        result = await super().add_membership(user_id, group_id)
        if result == MembershipResult.OK:
            self._removed.discard(user_id)
            self.add_resource(
                user_id, f"{user_id}-new", name=f"CPC-{user_id}-premium",
                status=ResourceStatus.PROVISIONING, service_plan="enterprise-4vcpu",
                policy_id=self.target_policy,
            )
        return result


def build_gateway() -> SimulatedGateway:
    gateway = SimulatedGateway(target_policy="pol-premium")
    gateway.assign_policy("grp-standard", "pol-standard")
    gateway.assign_policy("grp-premium", "pol-premium")
    for n, name in enumerate(["ada", "grace", "linus"], start=1):
        user_id = f"u{n}"
        gateway.add_user(f"{name}@contoso.com", user_id)
        gateway.add_member("grp-standard", user_id)
        gateway.add_resource(
            user_id, f"pc{n}", name=f"CPC-{name}", service_plan="enterprise-4vcpu",
            policy_id="pol-standard",
        )
    return gateway


async def main():
    settings = Settings(
        scheduler=SchedulerConfig(concurrency=2, tick_interval_seconds=0.1),
        polling=PollIntervals(provisioning=0.2, waiting=0.1),
    )
    summaries = SummaryCollector()
    scheduler = MigrationScheduler(build_gateway(), settings, observers=[summaries])

    for name in ["ada", "grace", "linus"]:
        scheduler.enqueue(MigrationRequest(
            f"{name}@contoso.com", "grp-standard", "grp-premium",
            source_group_name="Cloud PC - Standard", target_group_name="Cloud PC - Premium",
        ))

    # Linus goes first
    last = scheduler.queued()[-1]
    scheduler.reorder(last.job_id, "top")

    scheduler.start()
    ticks = await scheduler.run_until_idle(max_ticks=500)

    print(f"Finished after {ticks} ticks")
    print(json.dumps(summaries.to_dicts(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
