"""
Hashing utilities for cloudpc-migrator.

Job keys identify a (user, source group, target group) migration request
independently of the job id, so the scheduler can reject duplicates.
"""

from __future__ import annotations

import json
from typing import Any

from blake3 import blake3


def stable_json_dumps(obj: Any) -> str:
    """Serialize to JSON with sorted keys and no whitespace."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def content_hash(obj: Any, truncate: int | None = None) -> str:
    """
    Generate a deterministic blake3 hash for a JSON-serializable object.

    Args:
        obj: Any JSON-serializable object
        truncate: Truncate output to N characters

    Returns:
        Hexadecimal hash string
    """
    digest = blake3(stable_json_dumps(obj).encode("utf-8")).hexdigest()
    return digest[:truncate] if truncate else digest


def job_key(user: str, source_group_id: str, target_group_id: str) -> str:
    """Key for a migration request; the user principal name is case-insensitive."""
    return content_hash(
        {
            "user": user.strip().lower(),
            "source": source_group_id,
            "target": target_group_id,
        },
        truncate=32,
    )


__all__ = ["stable_json_dumps", "content_hash", "job_key"]
