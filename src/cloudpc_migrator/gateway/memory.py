"""
In-memory gateway implementation.

A scriptable stand-in for the remote control plane, suitable for tests and
dry runs. Resource statuses are changed by the caller between ticks, and
failures can be injected per operation.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict, deque

from ..errors import GatewayError
from ..resources import MembershipResult, ResourceInfo, ResourceStatus
from .base import ResourceGateway


class InMemoryGateway(ResourceGateway):
    """In-memory control plane.

    Every call is recorded in ``calls`` as ``(operation, args)``.
    """

    def __init__(self) -> None:
        self._users: dict[str, str] = {}
        self._group_policies: dict[str, set[str]] = defaultdict(set)
        self._members: dict[str, set[str]] = defaultdict(set)
        self._resources: dict[str, list[ResourceInfo]] = defaultdict(list)
        self._failures: dict[str, deque[GatewayError]] = defaultdict(deque)
        self.calls: list[tuple[str, tuple]] = []
        self.grace_ended: list[str] = []

    # -------------------------------------------------------------------------
    # Scripting helpers
    # -------------------------------------------------------------------------

    def add_user(self, user_principal_name: str, user_id: str) -> None:
        self._users[user_principal_name.lower()] = user_id

    def assign_policy(self, group_id: str, policy_id: str) -> None:
        self._group_policies[group_id].add(policy_id)

    def add_member(self, group_id: str, user_id: str) -> None:
        self._members[group_id].add(user_id)

    def members(self, group_id: str) -> set[str]:
        return set(self._members.get(group_id, set()))

    def add_resource(
        self,
        user_id: str,
        resource_id: str,
        *,
        name: str | None = None,
        status: ResourceStatus | str = ResourceStatus.PROVISIONED,
        service_plan: str | None = None,
        policy_id: str | None = None,
    ) -> ResourceInfo:
        resource = ResourceInfo(
            id=resource_id,
            name=name or resource_id,
            status=ResourceStatus(status),
            service_plan=service_plan,
            policy_id=policy_id,
        )
        self._resources[user_id].append(resource)
        return resource

    def set_status(self, resource_id: str, status: ResourceStatus | str) -> None:
        """Change the status of every resource with this id."""
        found = False
        for user_id, resources in self._resources.items():
            self._resources[user_id] = [
                dataclasses.replace(r, status=ResourceStatus(status)) if r.id == resource_id else r
                for r in resources
            ]
            found = found or any(r.id == resource_id for r in resources)
        if not found:
            raise KeyError(resource_id)

    def remove_resource(self, resource_id: str) -> None:
        for user_id, resources in self._resources.items():
            self._resources[user_id] = [r for r in resources if r.id != resource_id]

    def resources(self, user_id: str) -> list[ResourceInfo]:
        return list(self._resources.get(user_id, []))

    def fail_next(self, operation: str, error: GatewayError, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        for _ in range(times):
            self._failures[operation].append(error)

    def _record(self, operation: str, *args: str) -> None:
        self.calls.append((operation, args))
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    def count_calls(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    # -------------------------------------------------------------------------
    # ResourceGateway
    # -------------------------------------------------------------------------

    async def get_user_id(self, user_principal_name: str) -> str | None:
        self._record("get_user_id", user_principal_name)
        return self._users.get(user_principal_name.lower())

    async def list_resources_for_user(self, user_id: str) -> list[ResourceInfo]:
        self._record("list_resources_for_user", user_id)
        return list(self._resources.get(user_id, []))

    async def list_policies_for_group(self, group_id: str) -> set[str]:
        self._record("list_policies_for_group", group_id)
        return set(self._group_policies.get(group_id, set()))

    async def remove_membership(self, user_id: str, group_id: str) -> MembershipResult:
        self._record("remove_membership", user_id, group_id)
        if user_id not in self._members[group_id]:
            return MembershipResult.ALREADY_ABSENT
        self._members[group_id].discard(user_id)
        return MembershipResult.OK

    async def add_membership(self, user_id: str, group_id: str) -> MembershipResult:
        self._record("add_membership", user_id, group_id)
        if user_id in self._members[group_id]:
            return MembershipResult.ALREADY_PRESENT
        self._members[group_id].add(user_id)
        return MembershipResult.OK

    async def end_grace_period(self, resource_id: str) -> None:
        self._record("end_grace_period", resource_id)
        self.grace_ended.append(resource_id)


__all__ = ["InMemoryGateway"]
