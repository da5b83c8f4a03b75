"""Core modules for proxyplane - centralized error definitions."""

from proxyplane.core.errors import (
    ConfigurationError,
    CycleError,
    DeclarationError,
    ExitCode,
    InstanceFailed,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    ProxyPlaneError,
    ResourceNotFound,
    StateError,
    UnresolvedReferenceError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "ProxyPlaneError",
    "ConfigurationError",
    "DeclarationError",
    "CycleError",
    "UnresolvedReferenceError",
    "ProviderError",
    "ProviderTransientError",
    "ProviderPermanentError",
    "ResourceNotFound",
    "InstanceFailed",
    "StateError",
    "main_with_error_handling",
    "format_error_message",
]
