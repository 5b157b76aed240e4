"""
Custom Exceptions
Error taxonomy shared by the queue, runner, adapters and providers.
"""
from enum import Enum
from typing import Optional


class BatchAnalyzerError(Exception):
    """Base error for the batch analysis pipeline."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BatchAnalyzerError):
    """Missing or inconsistent configuration."""
    pass


class ValidationError(BatchAnalyzerError):
    """Bad input or configuration for a single operation (terminal)."""
    pass


class NotFoundError(BatchAnalyzerError):
    """A referenced program, lesson, run or job does not exist (terminal)."""

    def __init__(self, message: str, entity: str = None, entity_id: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.entity = entity
        self.entity_id = entity_id


class AuthError(BatchAnalyzerError):
    """Credentials are missing or rejected; the user must refresh them."""
    pass


class SessionExpiredError(AuthError):
    """The upstream content host rejected the session cookie (401/403)."""

    def __init__(self, message: str = "Session expired", status_code: Optional[int] = None, **kwargs):
        super().__init__(message, kwargs)
        self.status_code = status_code


class StaleCredentialError(AuthError):
    """Stored credentials can no longer be decrypted."""
    pass


class SourceError(BatchAnalyzerError):
    """Content source failure."""

    def __init__(self, message: str, source: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.source = source


class SourceFetchError(SourceError):
    """HTTP failure while fetching from a content host."""

    def __init__(self, message: str, source: str = None, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, source=source, **kwargs)
        self.status_code = status_code

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)


class UnsupportedSourceError(SourceError):
    """No adapter is registered for a source type."""
    pass


class StorageError(BatchAnalyzerError):
    """Persistent store failure."""
    pass


class LLMError(BatchAnalyzerError):
    """LLM call failure."""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class ProviderErrorCode(str, Enum):
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    BAD_OUTPUT = "BAD_OUTPUT"


class ProviderError(LLMError):
    """
    Normalized provider failure

    Every vendor exception is mapped to one of these before it leaves the
    provider layer, so callers only ever consult ``code`` and ``retryable``.
    """

    def __init__(
        self,
        message: str,
        code: ProviderErrorCode = ProviderErrorCode.PROVIDER_ERROR,
        retryable: bool = False,
        provider: str = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, provider=provider, **kwargs)
        self.code = ProviderErrorCode(code)
        self.retryable = retryable
        self.status_code = status_code

    def __str__(self):
        prefix = f"[{self.provider}] " if self.provider else ""
        return f"{prefix}{self.code.value}: {self.message}"


class TransientProviderError(ProviderError):
    """Provider failure worth retrying with backoff."""

    def __init__(self, message: str, code: ProviderErrorCode = ProviderErrorCode.PROVIDER_ERROR, **kwargs):
        kwargs.pop("retryable", None)
        super().__init__(message, code=code, retryable=True, **kwargs)
