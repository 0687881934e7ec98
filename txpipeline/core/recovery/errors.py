"""
Error Classification

Defines the failure taxonomy shared by the pipeline's network-facing components.
Errors are classified as recoverable (bounded retry) or unrecoverable (surfaced
to the executor as a typed outcome).
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for retry decisions."""

    NETWORK = "network"           # Transport failure, connection refused
    RATE_LIMIT = "rate_limit"     # HTTP 429 or provider quota
    TIMEOUT = "timeout"           # Bounded wait exceeded
    PROVIDER = "provider"         # Upstream 5xx or malformed response
    RPC = "rpc"                   # JSON-RPC error object
    TRANSACTION_REVERTED = "transaction_reverted"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NONCE = "nonce"               # Nonce too low / already known
    VALIDATION = "validation"     # Bad input, never retried
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    provider: Optional[str] = None
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for transient failures.

    Raised by clients when a bounded retry can reasonably succeed:
    rate limits, transport errors, gateway errors and timeouts.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retry_after = retry_after
        self.context = context or ErrorContext(
            category=category,
            recoverable=True,
            retry_after_seconds=retry_after,
        )


class UnrecoverableError(Exception):
    """Base class for failures a retry cannot fix."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category, recoverable=False)


class RateLimitError(RecoverableError):
    """Provider answered 429."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.RATE_LIMIT,
            retry_after=retry_after,
            context=ErrorContext(
                category=ErrorCategory.RATE_LIMIT,
                recoverable=True,
                retry_after_seconds=retry_after,
                provider=provider,
            ),
        )


class NetworkError(RecoverableError):
    """Transport-level failure talking to a provider."""

    def __init__(self, message: str = "Network error", provider: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            context=ErrorContext(
                category=ErrorCategory.NETWORK,
                recoverable=True,
                provider=provider,
            ),
        )


class OperationTimeoutError(RecoverableError):
    """A bounded wait expired."""

    def __init__(self, message: str = "Operation timed out", operation: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.TIMEOUT,
            context=ErrorContext(
                category=ErrorCategory.TIMEOUT,
                recoverable=True,
                details={"operation": operation} if operation else {},
            ),
        )


class ProviderUnavailableError(RecoverableError):
    """Upstream service answered with a gateway error or an unusable body."""

    def __init__(
        self,
        message: str = "Provider unavailable",
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.PROVIDER,
            retry_after=retry_after,
            context=ErrorContext(
                category=ErrorCategory.PROVIDER,
                recoverable=True,
                retry_after_seconds=retry_after,
                provider=provider,
                details={"status_code": status_code} if status_code is not None else {},
            ),
        )


class ChainRpcError(UnrecoverableError):
    """JSON-RPC node returned an error object."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        code: Optional[int] = None,
        data: Any = None,
        chain_id: Optional[int] = None,
    ):
        self.method = method
        self.code = code
        self.data = data
        super().__init__(
            message,
            category=_rpc_category(message),
            context=ErrorContext(
                category=_rpc_category(message),
                recoverable=False,
                chain_id=chain_id,
                details={"method": method, "code": code},
            ),
        )


class TransactionRevertedError(UnrecoverableError):
    """Transaction reverted on-chain or during simulation."""

    def __init__(
        self,
        message: str = "Transaction reverted",
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.TRANSACTION_REVERTED,
            context=ErrorContext(
                category=ErrorCategory.TRANSACTION_REVERTED,
                recoverable=False,
                tx_hash=tx_hash,
                chain_id=chain_id,
                details={"revert_reason": reason} if reason else {},
            ),
        )


def _rpc_category(message: str) -> ErrorCategory:
    lowered = message.lower()
    if "revert" in lowered:
        return ErrorCategory.TRANSACTION_REVERTED
    if "insufficient funds" in lowered:
        return ErrorCategory.INSUFFICIENT_FUNDS
    if "nonce" in lowered or "already known" in lowered:
        return ErrorCategory.NONCE
    return ErrorCategory.RPC


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Typed pipeline errors carry their own context; anything else is classified
    by type and message. Unknown errors are treated as unrecoverable so the
    retry policy never repeats a non-idempotent call by accident.
    """
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    if isinstance(error, httpx.TimeoutException):
        return ErrorContext(category=ErrorCategory.TIMEOUT, recoverable=True)
    if isinstance(error, httpx.TransportError):
        return ErrorContext(category=ErrorCategory.NETWORK, recoverable=True)

    if isinstance(error, asyncio.TimeoutError):
        return ErrorContext(category=ErrorCategory.TIMEOUT, recoverable=True)

    message = str(error).lower()

    rate_limit_patterns = ["rate limit", "too many requests", "429", "throttl"]
    if any(p in message for p in rate_limit_patterns):
        return ErrorContext(category=ErrorCategory.RATE_LIMIT, recoverable=True)

    network_patterns = ["connection", "unreachable", "refused", "dns", "socket"]
    if any(p in message for p in network_patterns):
        return ErrorContext(category=ErrorCategory.NETWORK, recoverable=True)

    if any(p in message for p in ("timeout", "timed out")):
        return ErrorContext(category=ErrorCategory.TIMEOUT, recoverable=True)

    if "revert" in message:
        return ErrorContext(category=ErrorCategory.TRANSACTION_REVERTED, recoverable=False)

    if "insufficient funds" in message:
        return ErrorContext(category=ErrorCategory.INSUFFICIENT_FUNDS, recoverable=False)

    return ErrorContext(category=ErrorCategory.UNKNOWN, recoverable=False)
