"""
Unified error handling for proxyplane.

Configuration errors are raised before any provider call is made. Provider
errors are raised per instance by resource providers and isolated to the
dependency branch they occur in.

Exit Codes:
- 0: Success
- 2: Partial failure (some instances failed or were blocked)
- 10: Configuration error (declarations, cycles, unresolved references)
- 11: Provider error (external service failure)
- 13: State store error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    PARTIAL_FAILURE = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    STATE_ERROR = 13
    UNKNOWN_ERROR = 127


class ProxyPlaneError(Exception):
    """Base exception for proxyplane errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ProxyPlaneError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class DeclarationError(ConfigurationError):
    """Raised when a declaration document is malformed."""


class CycleError(ConfigurationError):
    """Raised when the reference graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(
            f"Reference cycle detected: {' -> '.join(cycle)}",
            details={"cycle": cycle},
        )
        self.cycle = cycle


class UnresolvedReferenceError(ConfigurationError):
    """Raised when a reference points at an undeclared instance or attribute."""

    def __init__(self, source: str, target: str, reason: str = "not declared"):
        super().__init__(
            f"{source} references {target}, which is {reason}",
            details={"source": source, "target": target},
        )
        self.source = source
        self.target = target


class ProviderError(ProxyPlaneError):
    """Raised when an external provider/service fails."""

    exit_code = ExitCode.PROVIDER_ERROR


class ProviderTransientError(ProviderError):
    """Provider errors that should be retried (throttling, eventual consistency)."""


class ProviderPermanentError(ProviderError):
    """Provider errors that should not be retried (validation, access denied)."""


class ResourceNotFound(ProviderPermanentError):
    """Raised by providers when the addressed resource does not exist."""


class InstanceFailed(ProviderError):
    """Raised when applying a single instance failed after retries."""

    def __init__(self, key: str, cause: BaseException):
        super().__init__(f"{key} failed: {cause}", details={"instance": key})
        self.key = key
        self.cause = cause


class StateError(ProxyPlaneError):
    """Raised when the state store cannot be read or written."""

    exit_code = ExitCode.STATE_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - ProxyPlaneError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ProxyPlaneError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: ProxyPlaneError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
