"""Custom exceptions for the model orchestrator."""

from datetime import datetime
from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base exception for the model orchestrator."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}
        self.timestamp = datetime.utcnow()


class ConfigurationError(OrchestratorError):
    """Missing credential, unknown model or otherwise unusable provider configuration."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)
        self.provider = provider
        if provider:
            self.details["provider"] = provider


class RequestValidationError(OrchestratorError):
    """Request rejected before any network access."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="VALIDATION_ERROR", **kwargs)
        self.field = field
        if field:
            self.details["field"] = field


class ProviderError(OrchestratorError):
    """Transient provider-side failure (network, non-2xx, malformed body)."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = True,
        **kwargs,
    ):
        super().__init__(message, error_code=kwargs.pop("error_code", "PROVIDER_ERROR"), **kwargs)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable
        if provider:
            self.details["provider"] = provider
        if status_code is not None:
            self.details["status_code"] = status_code


class ProviderTimeoutError(ProviderError):
    """The caller's deadline expired before the provider answered."""

    def __init__(self, message: str, provider: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(message, provider=provider, error_code="PROVIDER_TIMEOUT")
        self.timeout = timeout


class StreamingNotSupportedError(OrchestratorError):
    """Streaming requested from an adapter without the streaming capability."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message, error_code="STREAMING_NOT_SUPPORTED")
        self.provider = provider


class AdapterNotInitializedError(OrchestratorError):
    """Adapter used before initialize() completed."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message, error_code="ADAPTER_NOT_INITIALIZED")
        self.provider = provider


class OrchestratorNotInitializedError(OrchestratorError):
    """Orchestrator used before initialize() completed."""

    def __init__(self, message: str = "Orchestrator is not initialized"):
        super().__init__(message, error_code="ORCHESTRATOR_NOT_INITIALIZED")


class NoAdaptersAvailableError(OrchestratorError):
    """No adapter can serve the request."""

    def __init__(self, message: str = "No model adapters available", **kwargs):
        super().__init__(message, error_code="NO_ADAPTERS_AVAILABLE", **kwargs)


class FailoverError(OrchestratorError):
    """Both the primary attempt and the failover attempt failed."""

    def __init__(self, primary_error: BaseException, fallback_error: BaseException):
        message = (
            f"All models unavailable: primary failed with {type(primary_error).__name__}: "
            f"{primary_error}; fallback failed with {type(fallback_error).__name__}: {fallback_error}"
        )
        super().__init__(
            message,
            error_code="FAILOVER_FAILED",
            details={
                "primary_error": str(primary_error),
                "fallback_error": str(fallback_error),
            },
        )
        self.primary_error = primary_error
        self.fallback_error = fallback_error


__all__ = [
    "OrchestratorError",
    "ConfigurationError",
    "RequestValidationError",
    "ProviderError",
    "ProviderTimeoutError",
    "StreamingNotSupportedError",
    "AdapterNotInitializedError",
    "OrchestratorNotInitializedError",
    "NoAdaptersAvailableError",
    "FailoverError",
]
