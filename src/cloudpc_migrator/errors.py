"""
Error taxonomy for cloudpc-migrator.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- Structured context for debugging
- HTTP status mapping for gateway errors
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the migrator."""

    # Validation errors (1xxx)
    VALIDATION_ERROR = "ERR_1000"
    USER_NOT_FOUND = "ERR_1001"
    SAME_GROUP = "ERR_1002"
    NO_MATCHING_RESOURCE = "ERR_1003"
    NO_TARGET_POLICY = "ERR_1004"
    DUPLICATE_JOB = "ERR_1005"

    # Gateway errors (2xxx)
    GATEWAY_ERROR = "ERR_2000"
    GATEWAY_TRANSIENT = "ERR_2001"
    GATEWAY_RATE_LIMIT = "ERR_2002"
    GATEWAY_AUTH = "ERR_2003"
    GATEWAY_NOT_FOUND = "ERR_2004"
    MEMBERSHIP_CHANGE = "ERR_2005"

    # Lifecycle errors (3xxx)
    STAGE_TIMEOUT = "ERR_3000"
    PROVISIONING_FAILED = "ERR_3001"

    # Job errors (4xxx)
    JOB_ERROR = "ERR_4000"
    JOB_NOT_FOUND = "ERR_4001"
    JOB_STATE = "ERR_4002"
    INVALID_JOB_STATE = "ERR_4003"

    # Configuration errors (6xxx)
    CONFIG_ERROR = "ERR_6000"
    INVALID_CONFIG = "ERR_6001"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "ERR_9000"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    job_id: str | None = None
    user: str | None = None
    stage: str | None = None
    operation: str | None = None
    resource_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "user": self.user,
            "stage": self.stage,
            "operation": self.operation,
            "resource_id": self.resource_id,
            **self.extra,
        }


class MigrationError(Exception):
    """
    Base exception for all migrator errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the operation can be retried on a later tick
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.job_id:
            parts.append(f"(job_id={self.context.job_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(MigrationError):
    """Request rejected before any side effect was made."""

    code = ErrorCode.VALIDATION_ERROR


class UserNotFoundError(ValidationError):
    code = ErrorCode.USER_NOT_FOUND

    def __init__(self, user: str, **kwargs):
        super().__init__(f"User '{user}' was not found", **kwargs)
        self.user = user


class SameGroupError(ValidationError):
    code = ErrorCode.SAME_GROUP

    def __init__(self, group_id: str, **kwargs):
        super().__init__(
            f"Source and target group are the same ({group_id})",
            **kwargs,
        )
        self.group_id = group_id


class NoMatchingResourceError(ValidationError):
    """No resource of the user belongs to a source-group policy."""

    code = ErrorCode.NO_MATCHING_RESOURCE


class NoTargetPolicyError(ValidationError):
    code = ErrorCode.NO_TARGET_POLICY


class DuplicateJobError(ValidationError):
    code = ErrorCode.DUPLICATE_JOB

    def __init__(self, message: str, *, existing_job_id: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.existing_job_id = existing_job_id


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(MigrationError):
    """Base class for errors raised by the remote resource gateway."""

    code = ErrorCode.GATEWAY_ERROR
    retryable = False
    http_status: int | None = None

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.http_status = http_status


class TransientGatewayError(GatewayError):
    """A single gateway call failed; it can be retried on the next due tick."""

    code = ErrorCode.GATEWAY_TRANSIENT
    retryable = True


class GatewayRateLimitError(TransientGatewayError):
    code = ErrorCode.GATEWAY_RATE_LIMIT

    def __init__(
        self,
        message: str = "Gateway rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs,
    ):
        kwargs.setdefault("http_status", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class GatewayAuthError(GatewayError):
    """Missing, expired or insufficient credentials. Not retryable."""

    code = ErrorCode.GATEWAY_AUTH


class GatewayNotFoundError(GatewayError):
    code = ErrorCode.GATEWAY_NOT_FOUND


class MembershipChangeError(MigrationError):
    """A group membership call failed; the membership state is unknown."""

    code = ErrorCode.MEMBERSHIP_CHANGE


# =============================================================================
# Lifecycle Errors
# =============================================================================


class StageTimeoutError(MigrationError):
    code = ErrorCode.STAGE_TIMEOUT

    def __init__(self, stage: str, elapsed: float, limit: float, **kwargs):
        super().__init__(
            f"Timed out in stage {stage} after {elapsed / 60:.1f} minutes "
            f"(limit {limit / 60:.0f} minutes)",
            **kwargs,
        )
        self.stage = stage
        self.elapsed = elapsed
        self.limit = limit


class ProvisioningFailureError(MigrationError):
    """A target-policy resource reported a failed provisioning."""

    code = ErrorCode.PROVISIONING_FAILED


# =============================================================================
# Job Errors
# =============================================================================


class JobError(MigrationError):
    code = ErrorCode.JOB_ERROR


class JobNotFoundError(JobError):
    code = ErrorCode.JOB_NOT_FOUND

    def __init__(self, job_id: str, **kwargs):
        super().__init__(f"Job {job_id} not found", **kwargs)
        self.job_id = job_id


class JobStateError(JobError):
    """The requested operation is not allowed in the job's current status."""

    code = ErrorCode.JOB_STATE


class InvalidJobStateError(JobError):
    """A job record holds an illegal combination of fields."""

    code = ErrorCode.INVALID_JOB_STATE


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(MigrationError):
    code = ErrorCode.CONFIG_ERROR


class InvalidConfigError(ConfigError):
    code = ErrorCode.INVALID_CONFIG


# =============================================================================
# Error Mapping from HTTP Status Codes
# =============================================================================


def error_from_status(
    status: int,
    message: str,
    *,
    retry_after: float | None = None,
    context: ErrorContext | None = None,
) -> GatewayError:
    """
    Create an appropriate GatewayError from an HTTP status code.

    Args:
        status: HTTP status code
        message: Error message returned by the remote API
        retry_after: Value of a Retry-After header, if any
        context: Additional error context

    Returns:
        Appropriate GatewayError subclass
    """
    ctx = context or ErrorContext()

    if status == 429:
        return GatewayRateLimitError(message, retry_after=retry_after, context=ctx)
    if status in (401, 403):
        return GatewayAuthError(message, http_status=status, context=ctx)
    if status == 404:
        return GatewayNotFoundError(message, http_status=status, context=ctx)
    if status == 408 or status >= 500:
        return TransientGatewayError(message, http_status=status, context=ctx)
    return GatewayError(message, http_status=status, context=ctx)


def is_retryable(error: Exception) -> bool:
    """
    Check if an error is retryable.

    Args:
        error: Exception to check

    Returns:
        True if the error is retryable
    """
    if isinstance(error, MigrationError):
        return error.retryable

    import asyncio

    retryable_types = (
        asyncio.TimeoutError,
        ConnectionError,
        TimeoutError,
    )
    return isinstance(error, retryable_types)


__all__ = [
    # Base
    "ErrorCode",
    "ErrorContext",
    "MigrationError",
    # Validation errors
    "ValidationError",
    "UserNotFoundError",
    "SameGroupError",
    "NoMatchingResourceError",
    "NoTargetPolicyError",
    "DuplicateJobError",
    # Gateway errors
    "GatewayError",
    "TransientGatewayError",
    "GatewayRateLimitError",
    "GatewayAuthError",
    "GatewayNotFoundError",
    "MembershipChangeError",
    # Lifecycle errors
    "StageTimeoutError",
    "ProvisioningFailureError",
    # Job errors
    "JobError",
    "JobNotFoundError",
    "JobStateError",
    "InvalidJobStateError",
    # Config errors
    "ConfigError",
    "InvalidConfigError",
    # Utilities
    "error_from_status",
    "is_retryable",
]
