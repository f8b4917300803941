"""
Structured error types for stackup.

Every failure the orchestrator can hit is represented by a typed error that
carries a category, a structured context and an optional chained cause. The
stage runner catches these at the stage boundary and records them on the
stage outcome; the CLI maps the survivors (configuration and runtime errors)
to exit codes.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         StackError                            │
        │             (category, context, cause, to_dict)               │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError            RuntimeUnavailableError              │
        │  (CONFIG)               (RUNTIME)                            │
        │                                                              │
        │  ProcessSpawnError      CommandError       StageTimeoutError │
        │  (PROCESS)              (PROCESS)          (HEALTH)          │
        │                                                              │
        │  ProvisioningError      VerificationError                    │
        │  (PROVISIONING)         (VERIFICATION, cause + remediation)  │
        └──────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise on a non-zero exit from ProcessRunner.run()
    ✅ DO: Inspect ``ProcessResult.exit_code`` and raise CommandError only
       where the caller needs success

    ❌ DON'T: Put passwords into ``ErrorContext.metadata``
    ✅ DO: Store role and unit names only

Tags:
    error-handling, exception-hierarchy, error-context, stackup
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    CONFIG = "CONFIG"  # Missing or invalid settings
    RUNTIME = "RUNTIME"  # Container engine unreachable
    PROCESS = "PROCESS"  # External command could not run or failed
    HEALTH = "HEALTH"  # Unit did not become healthy in time
    PROVISIONING = "PROVISIONING"  # Provisioning step failed
    VERIFICATION = "VERIFICATION"  # End state not met
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-``None`` fields are serialised by :meth:`to_dict`.
    """

    stage: str | None = None
    unit: str | None = None
    step: str | None = None
    run_id: str | None = None
    command: str | None = None
    exit_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["stage", "unit", "step", "run_id", "command", "exit_code"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class StackError(Exception):
    """Base exception for all stackup errors.

    Subclasses set ``default_category``; callers may override it per
    instance.

    Example:
        >>> error = StackError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(stage="teardown").context.stage
        'teardown'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StackError:
        """Add context fields fluently. Unknown keys go to ``metadata``."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialise for structured logging and JSON reports."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class ConfigError(StackError):
    """Missing or invalid configuration. Fatal before any stage runs."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, message: str, *, missing: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.missing = list(missing or [])


class RuntimeUnavailableError(StackError):
    """The container engine is not installed or not reachable."""

    default_category = ErrorCategory.RUNTIME


class ProcessSpawnError(StackError):
    """An external command could not be started (e.g. binary not on PATH)."""

    default_category = ErrorCategory.PROCESS


class CommandError(StackError):
    """An external command ran but exited non-zero where success was required."""

    default_category = ErrorCategory.PROCESS

    def __init__(self, message: str, *, exit_code: int | None = None, stderr: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code is not None:
            self.context.exit_code = exit_code


class StageTimeoutError(StackError):
    """A unit did not report healthy within its timeout."""

    default_category = ErrorCategory.HEALTH

    def __init__(self, message: str, *, unit: str, timeout: float, log_tail: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.unit = unit
        self.timeout = timeout
        self.log_tail = log_tail
        self.context.unit = unit


class ProvisioningError(StackError):
    """One or more non-extension provisioning steps failed."""

    default_category = ErrorCategory.PROVISIONING

    def __init__(self, message: str, *, failed_steps: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.failed_steps = list(failed_steps or [])


class VerificationError(StackError):
    """The data store is reachable but its end state does not match configuration."""

    default_category = ErrorCategory.VERIFICATION

    def __init__(self, message: str, *, reason: str, remediation: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.reason = reason
        self.remediation = remediation


__all__ = [
    "CommandError",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "ProcessSpawnError",
    "ProvisioningError",
    "RuntimeUnavailableError",
    "StackError",
    "StageTimeoutError",
    "VerificationError",
]
