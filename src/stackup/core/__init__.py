"""Core primitives shared by every stackup subpackage: errors, logging, settings."""

from stackup.core.errors import (
    CommandError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    ProcessSpawnError,
    ProvisioningError,
    RuntimeUnavailableError,
    StackError,
    StageTimeoutError,
    VerificationError,
)
from stackup.core.logging import LogContext, configure_logging, get_logger
from stackup.core.settings import CredentialPolicy, StackSettings, load_settings, mask_secret

__all__ = [
    "CommandError",
    "ConfigError",
    "CredentialPolicy",
    "ErrorCategory",
    "ErrorContext",
    "LogContext",
    "ProcessSpawnError",
    "ProvisioningError",
    "RuntimeUnavailableError",
    "StackError",
    "StackSettings",
    "StageTimeoutError",
    "VerificationError",
    "configure_logging",
    "get_logger",
    "load_settings",
    "mask_secret",
]
