"""
Configuration system for cloudpc-migrator.

This package provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading validated by JSON schema
- Sensible defaults with override capability
"""

from .base import LogFormat, LogLevel
from .gateway import GraphConfig
from .logging import LoggingConfig
from .scheduler import PollIntervals, SchedulerConfig, StageTimeouts
from .schema import CONFIG_SCHEMA
from .settings import Settings, load_env

__all__ = [
    # Types
    "LogLevel",
    "LogFormat",
    # Sections
    "SchedulerConfig",
    "StageTimeouts",
    "PollIntervals",
    "GraphConfig",
    "LoggingConfig",
    # Master config
    "Settings",
    "CONFIG_SCHEMA",
    # Helpers
    "load_env",
]
