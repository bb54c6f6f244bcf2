"""
Settings master configuration and environment helpers.
"""

from __future__ import annotations

import dataclasses
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from dotenv import find_dotenv, load_dotenv

from ..errors import InvalidConfigError
from .gateway import GraphConfig
from .logging import LoggingConfig
from .scheduler import PollIntervals, SchedulerConfig, StageTimeouts
from .schema import CONFIG_SCHEMA

# env suffix -> (section, field, converter)
_ENV_FIELDS: dict[str, tuple[str, str, Any]] = {
    "MAX_CONCURRENCY": ("scheduler", "max_concurrency", int),
    "CONCURRENCY": ("scheduler", "concurrency", int),
    "TICK_INTERVAL": ("scheduler", "tick_interval_seconds", float),
    "TIMEOUT_IMMEDIATE": ("timeouts", "immediate", float),
    "TIMEOUT_GRACE_PERIOD": ("timeouts", "grace_period", float),
    "TIMEOUT_ENDING_GRACE_PERIOD": ("timeouts", "ending_grace_period", float),
    "TIMEOUT_DEPROVISION": ("timeouts", "deprovision", float),
    "TIMEOUT_PROVISIONING": ("timeouts", "provisioning", float),
    "POLL_PROVISIONING": ("polling", "provisioning", float),
    "POLL_WAITING": ("polling", "waiting", float),
    "GRAPH_BASE_URL": ("graph", "base_url", str),
    "GRAPH_TIMEOUT": ("graph", "timeout", float),
    "GRAPH_ACCESS_TOKEN": ("graph", "access_token", str),
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FORMAT": ("logging", "format", str.lower),
}

_SECTIONS: dict[str, type] = {
    "scheduler": SchedulerConfig,
    "timeouts": StageTimeouts,
    "polling": PollIntervals,
    "graph": GraphConfig,
    "logging": LoggingConfig,
}


@dataclass
class Settings:
    """
    Master configuration for the migrator.

    This aggregates all configuration sections into a single object
    that can be loaded from environment variables, files, or constructed
    programmatically. It is passed explicitly to the scheduler and gateway.
    """

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    timeouts: StageTimeouts = field(default_factory=StageTimeouts)
    polling: PollIntervals = field(default_factory=PollIntervals)
    graph: GraphConfig = field(default_factory=GraphConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, prefix: str = "MIGRATE_") -> Settings:
        """
        Load settings from environment variables.

        Example:
            MIGRATE_CONCURRENCY=5
            MIGRATE_TIMEOUT_PROVISIONING=7200
            MIGRATE_LOG_FORMAT=json
        """
        data: dict[str, dict[str, Any]] = {}
        for suffix, (section, name, convert) in _ENV_FIELDS.items():
            raw = os.getenv(f"{prefix}{suffix}")
            if raw is None or raw == "":
                continue
            try:
                data.setdefault(section, {})[name] = convert(raw)
            except ValueError as exc:
                raise InvalidConfigError(
                    f"Invalid value for {prefix}{suffix}: {raw!r}", cause=exc
                ) from exc
        return cls._build(data)

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """
        Load settings from a YAML or TOML file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .toml)

        Returns:
            Settings object with values from file
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {suffix}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """
        Create Settings from a dictionary.

        The dictionary is validated against the configuration schema
        before any section is constructed.
        """
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise InvalidConfigError(f"Configuration validation failed: {e.message}", cause=e) from e
        return cls._build(data)

    @classmethod
    def _build(cls, data: dict[str, Any]) -> Settings:
        sections: dict[str, Any] = {}
        for name, section_cls in _SECTIONS.items():
            values = data.get(name)
            if not values:
                continue
            try:
                sections[name] = section_cls(**values)
            except (TypeError, ValueError) as e:
                raise InvalidConfigError(f"Invalid '{name}' configuration: {e}", cause=e) from e
        return cls(**sections)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return {k: convert(v) for k, v in dataclasses.asdict(obj).items()}
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        return convert(self)


def load_env(path: str | None = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        path: Optional path to a .env file. If not provided, uses find_dotenv().
        override: Whether to override existing environment variables.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = ["Settings", "load_env"]
