"""
Scheduler, timeout and polling configuration.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SchedulerConfig:
    """Configuration for job admission and the tick driver."""

    # Concurrency cap applies to Active jobs only
    max_concurrency: int = 10
    concurrency: int = 3

    # Driver loop
    tick_interval_seconds: float = 5.0

    # Whether a fresh scheduler admits queued jobs before start() is called
    start_accepting: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if not 1 <= self.concurrency <= self.max_concurrency:
            raise ValueError(
                f"concurrency must be between 1 and {self.max_concurrency}"
            )
        if self.tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")


@dataclass
class StageTimeouts:
    """Per-stage timeouts, in seconds."""

    immediate: float = 600.0
    grace_period: float = 15 * 60.0
    ending_grace_period: float = 30 * 60.0
    deprovision: float = 60 * 60.0
    provisioning: float = 90 * 60.0

    def __post_init__(self):
        for name in ("immediate", "grace_period", "ending_grace_period", "deprovision", "provisioning"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} timeout must be positive")


@dataclass
class PollIntervals:
    """Minimum seconds between two polls of a waiting stage."""

    provisioning: float = 180.0
    waiting: float = 60.0

    def __post_init__(self):
        if self.provisioning <= 0 or self.waiting <= 0:
            raise ValueError("poll intervals must be positive")


__all__ = ["SchedulerConfig", "StageTimeouts", "PollIntervals"]
