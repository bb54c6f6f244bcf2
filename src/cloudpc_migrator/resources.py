"""
Resource records exchanged with the remote control plane.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ResourceStatus(str, Enum):
    """Status of a remote resource instance, using the remote wire values."""
    PROVISIONED = "provisioned"
    PROVISIONED_WITH_WARNINGS = "provisionedWithWarnings"
    PROVISIONING = "provisioning"
    IN_GRACE_PERIOD = "inGracePeriod"
    DEPROVISIONING = "deprovisioning"
    NOT_PROVISIONED = "notProvisioned"
    FAILED = "failed"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> ResourceStatus:
        """Map a remote status string to a member; unknown values become OTHER."""
        if not value:
            return cls.OTHER
        lowered = value.lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return cls.OTHER

    @property
    def is_ready(self) -> bool:
        return self in (ResourceStatus.PROVISIONED, ResourceStatus.PROVISIONED_WITH_WARNINGS)

    @property
    def is_past_grace(self) -> bool:
        return self in (ResourceStatus.DEPROVISIONING, ResourceStatus.NOT_PROVISIONED)


class MembershipResult(str, Enum):
    """Outcome of a membership change."""
    OK = "ok"
    ALREADY_ABSENT = "already_absent"
    ALREADY_PRESENT = "already_present"


@dataclass(frozen=True)
class ResourceInfo:
    """A resource instance as reported by the gateway."""
    id: str
    name: str
    status: ResourceStatus
    service_plan: str | None = None
    policy_id: str | None = None

    def snapshot(self) -> ResourceSnapshot:
        return ResourceSnapshot(id=self.id, name=self.name, service_plan=self.service_plan)


@dataclass(frozen=True)
class ResourceSnapshot:
    """A resource captured on the job for reporting."""
    id: str
    name: str
    service_plan: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "service_plan": self.service_plan}


__all__ = ["ResourceStatus", "MembershipResult", "ResourceInfo", "ResourceSnapshot"]
