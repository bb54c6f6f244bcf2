"""
Remote gateway configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class GraphConfig:
    """Configuration for the Microsoft Graph gateway."""

    base_url: str = "https://graph.microsoft.com/v1.0"
    timeout: float = 30.0

    # Static bearer token; acquiring one is the caller's business
    access_token: str | None = field(
        default_factory=lambda: os.getenv("MIGRATE_GRAPH_ACCESS_TOKEN")
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must be a valid HTTP(S) URL")
        self.base_url = self.base_url.rstrip("/")


__all__ = ["GraphConfig"]
