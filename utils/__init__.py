"""
Utils Module
Logging setup and shared exception types
"""
from .logger import setup_logger, get_logger, configure_package_logging
from .exceptions import (
    AuthError,
    BatchAnalyzerError,
    ConfigurationError,
    LLMError,
    NotFoundError,
    ProviderError,
    ProviderErrorCode,
    SessionExpiredError,
    SourceError,
    SourceFetchError,
    StaleCredentialError,
    StorageError,
    TransientProviderError,
    UnsupportedSourceError,
    ValidationError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "configure_package_logging",
    "AuthError",
    "BatchAnalyzerError",
    "ConfigurationError",
    "LLMError",
    "NotFoundError",
    "ProviderError",
    "ProviderErrorCode",
    "SessionExpiredError",
    "SourceError",
    "SourceFetchError",
    "StaleCredentialError",
    "StorageError",
    "TransientProviderError",
    "UnsupportedSourceError",
    "ValidationError",
]
