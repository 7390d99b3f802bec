from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers through ``Response.error_kind``."""
    INVALID_PROVIDER = "invalid_provider"
    PROVIDER_NOT_FOUND = "provider_not_found"
    NO_CAPABLE_PROVIDER = "no_capable_provider"
    CAPABILITY_NOT_SUPPORTED = "capability_not_supported"
    PROVIDER_CALL_FAILED = "provider_call_failed"
    CANCELLED = "cancelled"


class RouterError(Exception):
    """Base exception class for the provider routing project."""
    kind: ErrorKind = ErrorKind.PROVIDER_CALL_FAILED

class ConfigError(RouterError):
    """Raised when there is an error in a configuration file or the environment."""
    pass

class InvalidProviderError(RouterError):
    """Raised when a provider is missing or has an empty id."""
    kind = ErrorKind.INVALID_PROVIDER

class ProviderNotFoundError(RouterError):
    """Raised when a provider id is not registered."""
    kind = ErrorKind.PROVIDER_NOT_FOUND

class NoCapableProviderError(RouterError):
    """Raised when no registered provider declares the requested capability."""
    kind = ErrorKind.NO_CAPABLE_PROVIDER

class CapabilityNotSupportedError(RouterError):
    """Raised when a pinned provider does not declare the requested capability."""
    kind = ErrorKind.CAPABILITY_NOT_SUPPORTED

class ProviderCallError(RouterError):
    """Raised when a provider reports failure or its call raises."""
    kind = ErrorKind.PROVIDER_CALL_FAILED
