"""
Error taxonomy for the ingestion and scoring pipeline.

ProviderError, NormalizationError and PersistenceError are isolated to the
identifier that raised them. SelectionError is fatal for a run.
"""

from typing import Any, Dict, Optional


class ValueScreenerError(Exception):
    """Base class for all pipeline errors"""


class ProviderError(ValueScreenerError):
    """Finnhub request failed after retries, or returned an unusable payload"""

    NETWORK_ERRORS = (ConnectionError, TimeoutError, OSError)
    RETRYABLE_HTTP_ERRORS = (429, 500, 502, 503, 504)
    AUTHENTICATION_ERRORS = (401, 403)

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        last_cause: Optional[BaseException] = None,
        response_data: Optional[Dict[str, Any]] = None,
        error_category: Optional[str] = None,
    ) -> None:
        self.message = message
        self.operation = operation
        self.status_code = status_code
        self.last_cause = last_cause
        self.response_data = response_data
        self.error_category = error_category or self._classify_error()
        super().__init__(f"[{operation}] {message}")

    def _classify_error(self) -> str:
        if self.status_code:
            if self.status_code in self.AUTHENTICATION_ERRORS:
                return "authentication"
            if self.status_code in self.RETRYABLE_HTTP_ERRORS or self.status_code >= 500:
                return "retryable"
            if 400 <= self.status_code < 500:
                return "client_error"
        if isinstance(self.last_cause, self.NETWORK_ERRORS):
            return "network"
        return "unknown"

    def is_retryable(self) -> bool:
        return self.error_category == "retryable"


class NormalizationError(ValueScreenerError):
    """Exchange rate missing or non-positive for a currency conversion"""

    def __init__(self, currency: str, rate: Any = None, message: Optional[str] = None) -> None:
        self.currency = currency
        self.rate = rate
        super().__init__(message or f"Invalid exchange rate for {currency}: {rate!r}")


class PersistenceError(ValueScreenerError):
    """Repository write failed"""

    def __init__(self, message: str, operation: str, symbol: Optional[str] = None) -> None:
        self.operation = operation
        self.symbol = symbol
        super().__init__(message)


class SelectionError(ValueScreenerError):
    """Candidate set could not be determined; the run cannot start"""
