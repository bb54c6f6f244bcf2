"""
JSON schemas for configuration validation.
"""

SCHEDULER_SCHEMA = {
    "type": "object",
    "properties": {
        "max_concurrency": {"type": "integer", "minimum": 1},
        "concurrency": {"type": "integer", "minimum": 1},
        "tick_interval_seconds": {"type": "number", "exclusiveMinimum": 0},
        "start_accepting": {"type": "boolean"},
    },
    "additionalProperties": False,
}

TIMEOUTS_SCHEMA = {
    "type": "object",
    "properties": {
        "immediate": {"type": "number", "exclusiveMinimum": 0},
        "grace_period": {"type": "number", "exclusiveMinimum": 0},
        "ending_grace_period": {"type": "number", "exclusiveMinimum": 0},
        "deprovision": {"type": "number", "exclusiveMinimum": 0},
        "provisioning": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

POLLING_SCHEMA = {
    "type": "object",
    "properties": {
        "provisioning": {"type": "number", "exclusiveMinimum": 0},
        "waiting": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

GRAPH_SCHEMA = {
    "type": "object",
    "properties": {
        "base_url": {"type": "string"},
        "timeout": {"type": "number", "minimum": 0.1},
        "access_token": {"type": ["string", "null"]},
    },
    "additionalProperties": False,
}

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "format": {"type": "string", "enum": ["text", "json"]},
        "include_job_context": {"type": "boolean"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "scheduler": SCHEDULER_SCHEMA,
        "timeouts": TIMEOUTS_SCHEMA,
        "polling": POLLING_SCHEMA,
        "graph": GRAPH_SCHEMA,
        "logging": LOGGING_SCHEMA,
    },
}
