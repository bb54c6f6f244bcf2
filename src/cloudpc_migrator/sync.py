"""Thin sync wrappers for the async scheduler.

These are for scripts and tests that have no event loop of their own.

Key design:
- Uses asyncio.run() when no event loop is active
- Raises RuntimeError if called inside an existing event loop
- Clear error messages point to the async alternative
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .jobs.scheduler import MigrationScheduler, TickReport


def _ensure_no_running_loop(name: str, alternative: str) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None:
        raise RuntimeError(
            f"{name}() cannot be called inside an async context. "
            f"Use '{alternative}' instead."
        )


def tick_sync(scheduler: MigrationScheduler) -> TickReport:
    """Sync wrapper for MigrationScheduler.tick.

    Raises:
        RuntimeError: If called inside an existing async event loop.
    """
    _ensure_no_running_loop("tick_sync", "await scheduler.tick()")
    return asyncio.run(scheduler.tick())


def run_until_idle_sync(
    scheduler: MigrationScheduler,
    *,
    interval: float | None = None,
    max_ticks: int | None = None,
) -> int:
    """Sync wrapper for MigrationScheduler.run_until_idle.

    Args:
        scheduler: The scheduler to drive.
        interval: Seconds between ticks; defaults to the configured interval.
        max_ticks: Upper bound on the number of ticks.

    Returns:
        Number of ticks run.

    Raises:
        RuntimeError: If called inside an existing async event loop.
    """
    _ensure_no_running_loop("run_until_idle_sync", "await scheduler.run_until_idle()")
    return asyncio.run(scheduler.run_until_idle(interval=interval, max_ticks=max_ticks))


__all__ = ["tick_sync", "run_until_idle_sync"]
