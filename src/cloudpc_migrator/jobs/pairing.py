"""
Service-plan pairing of old and new resources.

Completion is decided per service plan: for every plan present among the
old resources, at least as many qualifying new resources with that plan
must exist. Pairing for reports is positional inside each plan group,
never by identifier, since the backend may reuse identifiers across a
deprovision/reprovision cycle.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence

from ..resources import ResourceInfo, ResourceSnapshot


def plan_counts(resources: Iterable[ResourceSnapshot | ResourceInfo]) -> Counter:
    """Count resources per service plan."""
    return Counter(r.service_plan for r in resources)


def missing_plans(
    old: Sequence[ResourceSnapshot],
    new: Sequence[ResourceInfo],
) -> dict[str | None, int]:
    """Plans still short of new resources, with the number missing."""
    needed = plan_counts(old)
    have = plan_counts(new)
    return {
        plan: count - have.get(plan, 0)
        for plan, count in needed.items()
        if have.get(plan, 0) < count
    }


def is_complete(old: Sequence[ResourceSnapshot], new: Sequence[ResourceInfo]) -> bool:
    """True once every old plan is matched by at least as many new resources."""
    return not missing_plans(old, new)


def pair_resources(
    old: Sequence[ResourceSnapshot],
    new: Sequence[ResourceInfo],
) -> list[tuple[ResourceSnapshot, ResourceInfo | None]]:
    """Pair old and new resources positionally within each service plan.

    Old resources without a counterpart are paired with None. Extra new
    resources are left out.
    """
    by_plan: dict[str | None, list[ResourceInfo]] = defaultdict(list)
    for resource in new:
        by_plan[resource.service_plan].append(resource)

    taken: dict[str | None, int] = defaultdict(int)
    pairs: list[tuple[ResourceSnapshot, ResourceInfo | None]] = []
    for resource in old:
        group = by_plan[resource.service_plan]
        index = taken[resource.service_plan]
        pairs.append((resource, group[index] if index < len(group) else None))
        taken[resource.service_plan] += 1
    return pairs


def select_new_resources(
    old: Sequence[ResourceSnapshot],
    new: Sequence[ResourceInfo],
) -> list[ResourceInfo]:
    """The new resources that pair with an old one, in old-resource order."""
    return [paired for _, paired in pair_resources(old, new) if paired is not None]


__all__ = [
    "plan_counts",
    "missing_plans",
    "is_complete",
    "pair_resources",
    "select_new_resources",
]
