"""Central release pipeline exception hierarchy.

This module defines the base exception ``AppError`` and the specialized
subclasses used throughout the pipeline to represent its failure modes:
configuration problems, failed collaborator calls, exceeded timeouts and
concurrency conflicts on the shared tag namespace. The orchestrator relies
on this hierarchy to record which stage failed and why without having to
interpret collaborator-specific errors.
"""

from __future__ import annotations

from typing import Any, Mapping


class AppError(Exception):
    """Base exception for all pipeline-level errors.

    Parameters
    ----------
    code : str
        Machine-readable error code (e.g., ``'EXECUTION_ERROR'``).
    message : str
        Human-readable message describing the error.
    context : Mapping[str, Any] | None, optional
        Optional structured context for logging. Must never contain secrets.
    transient : bool, optional
        Whether the error is temporary and a re-triggered run may succeed.

    Attributes
    ----------
    code : str
        Stable machine-readable error code.
    message : str
        Human-readable message.
    context : dict
        Structured, non-sensitive context for logging.
    transient : bool
        True if the error is transient.

    Examples
    --------
    >>> e = AppError('CODE', 'message', context={'stage': 'tag'})
    >>> e.code
    'CODE'
    """

    __slots__ = ("code", "message", "context", "transient")

    def __init__(
        self,
        code: str,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = dict(context or {})
        self.transient = bool(transient)

    def __str__(self) -> str:
        """Return a compact string representation of the error."""
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Return a log-safe dictionary representation of the error."""
        return {
            "error_code": self.code,
            "message": self.message,
            "context": self.context,
            "is_transient": self.transient,
        }


class ConfigurationError(AppError):
    """Raised for invalid or missing configuration."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "CONFIGURATION_ERROR", message, context=context, transient=False
        )


class ParseError(ConfigurationError):
    """Raised when the version file is unreadable, empty or malformed."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message, context=context)
        self.code = "PARSE_ERROR"


class ExecutionError(AppError):
    """Raised when a collaborator call (build, test, tag, publish) fails.

    Parameters
    ----------
    message : str
        Human-readable message.
    stage : str | None, optional
        Name of the pipeline stage the call belonged to, when known.
    context : Mapping[str, Any] | None, optional
        Structured context such as the command and a redacted output tail.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        context: Mapping[str, Any] | None = None,
        code: str = "EXECUTION_ERROR",
    ) -> None:
        ctx = dict(context or {})
        if stage is not None:
            ctx.setdefault("stage", stage)
        super().__init__(code, message, context=ctx, transient=False)
        self.stage = stage


class PushRejectedError(ExecutionError):
    """Raised when the remote refuses a tag push (network, auth or hook)."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            message, stage="tag", context=context, code="PUSH_REJECTED_ERROR"
        )


class PublishError(ExecutionError):
    """Raised when a package unit fails to publish to the registry."""

    def __init__(
        self,
        message: str,
        *,
        unit: str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        ctx.setdefault("unit", unit)
        super().__init__(
            message, stage=f"publish:{unit}", context=ctx, code="PUBLISH_ERROR"
        )
        self.unit = unit


class TimeoutExceededError(AppError):
    """Raised when a collaborator call exceeds its configured bound."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "TIMEOUT_EXCEEDED_ERROR", message, context=context, transient=False
        )


class ConcurrencyConflictError(AppError):
    """Raised for duplicate tags or overlapping runs for the same version."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        code: str = "CONCURRENCY_CONFLICT_ERROR",
    ) -> None:
        super().__init__(code, message, context=context, transient=True)


class TagAlreadyExistsError(ConcurrencyConflictError):
    """Raised when the release tag already exists locally or on the remote."""

    def __init__(
        self, tag: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        ctx = dict(context or {})
        ctx.setdefault("tag", tag)
        super().__init__(
            f"Tag '{tag}' already exists", context=ctx, code="TAG_EXISTS_ERROR"
        )
        self.tag = tag


class RunInProgressError(ConcurrencyConflictError):
    """Raised when another invocation holds the lock for the same version."""

    def __init__(
        self, key: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        ctx = dict(context or {})
        ctx.setdefault("lock", key)
        super().__init__(
            f"Another release invocation holds the lock '{key}'",
            context=ctx,
            code="RUN_IN_PROGRESS_ERROR",
        )
        self.key = key


class PipelineCancelledError(AppError):
    """Raised or recorded when the operator aborts a run."""

    def __init__(
        self, message: str = "Pipeline cancelled", *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "PIPELINE_CANCELLED", message, context=context, transient=False
        )
