"""
Remote resource gateway interface.

The gateway is the only way the orchestrator talks to the outside world.
Implementations raise GatewayError subclasses; retryable ones are retried
by the stage engine on the job's next due tick.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..resources import MembershipResult, ResourceInfo


class ResourceGateway(ABC):
    """Abstract interface for the remote control plane."""

    @abstractmethod
    async def get_user_id(self, user_principal_name: str) -> str | None:
        """Resolve a user principal name to a user id, None if unknown."""
        ...

    @abstractmethod
    async def list_resources_for_user(self, user_id: str) -> list[ResourceInfo]:
        """List every resource instance assigned to the user."""
        ...

    @abstractmethod
    async def list_policies_for_group(self, group_id: str) -> set[str]:
        """Ids of the provisioning policies assigned to a group."""
        ...

    @abstractmethod
    async def remove_membership(self, user_id: str, group_id: str) -> MembershipResult:
        """Remove a user from a group. Returns ALREADY_ABSENT if not a member."""
        ...

    @abstractmethod
    async def add_membership(self, user_id: str, group_id: str) -> MembershipResult:
        """Add a user to a group. Returns ALREADY_PRESENT if already a member."""
        ...

    @abstractmethod
    async def end_grace_period(self, resource_id: str) -> None:
        """Ask the backend to end a resource's grace period now."""
        ...

    async def close(self) -> None:
        """Release any held connections."""
        return


__all__ = ["MembershipResult", "ResourceGateway"]
