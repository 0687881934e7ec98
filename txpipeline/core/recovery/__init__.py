"""
Error Recovery Module

Provides the error taxonomy and the bounded retry policy shared by the
pipeline's network clients.
"""

from .errors import (
    ErrorCategory,
    ErrorContext,
    RecoverableError,
    UnrecoverableError,
    RateLimitError,
    NetworkError,
    OperationTimeoutError,
    ProviderUnavailableError,
    ChainRpcError,
    TransactionRevertedError,
    classify_error,
)
from .retry import RetryConfig, RetryPolicy, RETRYABLE_STATUS_CODES, default_retryable, parse_retry_after

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "RecoverableError",
    "UnrecoverableError",
    "RateLimitError",
    "NetworkError",
    "OperationTimeoutError",
    "ProviderUnavailableError",
    "ChainRpcError",
    "TransactionRevertedError",
    "classify_error",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "RETRYABLE_STATUS_CODES",
    "default_retryable",
    "parse_retry_after",
]
