"""Error types raised by the ArangoDB client.

Network-level failures derive from :class:`NetworkError`; anything the
server answered with an error status derives from :class:`ArangoHttpError`.
Responses carrying a structured ArangoDB error body are decoded into
:class:`ArangoError` (or one of its errorNum-specific subclasses).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .codes import CURSOR_NOT_FOUND, ERROR_ARANGO_CONFLICT, TRANSACTION_NOT_FOUND

if TYPE_CHECKING:
    import httpx


class ConfigurationError(ValueError):
    """Raised for unusable client configuration (empty pool, bad strategy)."""


class NetworkError(RuntimeError):
    """Raised when a request could not be completed at the transport level."""

    def __init__(
        self,
        message: str,
        request: httpx.Request | None = None,
        *,
        is_safe_to_retry: bool = False,
    ) -> None:
        super().__init__(message)
        self.request = request
        self.is_safe_to_retry = is_safe_to_retry


class ResponseTimeoutError(NetworkError):
    """Raised when the per-attempt timeout fires before a response arrives."""

    def __init__(
        self,
        message: str | None = None,
        request: httpx.Request | None = None,
        *,
        is_safe_to_retry: bool = False,
    ) -> None:
        super().__init__(
            message or "Timed out while waiting for server response",
            request,
            is_safe_to_retry=is_safe_to_retry,
        )


class RequestAbortedError(NetworkError):
    """Raised when a pending request is aborted because its host was closed."""

    def __init__(self, message: str | None = None, request: httpx.Request | None = None) -> None:
        super().__init__(message or "Request aborted", request, is_safe_to_retry=False)


class FetchFailedError(NetworkError):
    """Raised when the transport failed to connect, send or receive."""


class PropagationTimeoutError(RuntimeError):
    """Raised when a change did not reach every coordinator in time."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Timed out while waiting for propagation")


class TransactionStateError(RuntimeError):
    """Raised when a finished transaction is committed, aborted or stepped."""


class ArangoHttpError(RuntimeError):
    """Raised when the ArangoDB HTTP API reports an error."""

    def __init__(self, status_code: int, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"ArangoDB HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.details = details or {}


class HttpError(ArangoHttpError):
    """Error response without a structured ArangoDB error body."""


class NotLeaderError(ArangoHttpError):
    """Raised when a follower keeps redirecting to another leader."""

    def __init__(self, leader_endpoint: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(503, f"Server is not the leader, leader is {leader_endpoint}", details)
        self.leader_endpoint = leader_endpoint


class ArangoError(ArangoHttpError):
    """Error response with an ArangoDB ``errorNum``."""

    def __init__(self, status_code: int, error_num: int, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(status_code, message, details)
        self.error_num = error_num

    @classmethod
    def from_response(cls, status_code: int, body: dict[str, Any]) -> ArangoError:
        """Decode an error body into the most specific subclass."""

        error_num = int(body.get("errorNum", 0))
        message = body.get("errorMessage") or body.get("message") or f"HTTP {status_code}"
        code = int(body.get("code", status_code))
        error_cls = _ERROR_CLASSES.get(error_num, ArangoError)
        return error_cls(code, error_num, message, body)

    def __str__(self) -> str:
        return f"ArangoError {self.error_num}: {self.message}"


class ConflictError(ArangoError):
    """Write-write conflict (errorNum 1200)."""


class CursorNotFoundError(ArangoError):
    """The server no longer knows the cursor, usually because its TTL expired."""


class TransactionNotFoundError(ArangoError):
    """The server no longer knows the transaction."""


_ERROR_CLASSES: dict[int, type[ArangoError]] = {
    ERROR_ARANGO_CONFLICT: ConflictError,
    CURSOR_NOT_FOUND: CursorNotFoundError,
    TRANSACTION_NOT_FOUND: TransactionNotFoundError,
}


def is_arango_error_body(body: Any) -> bool:
    """Return True when ``body`` looks like an ArangoDB error response."""

    return isinstance(body, dict) and bool(body.get("error")) and "errorNum" in body


__all__ = [
    "ArangoError",
    "ArangoHttpError",
    "ConfigurationError",
    "ConflictError",
    "CursorNotFoundError",
    "FetchFailedError",
    "HttpError",
    "NetworkError",
    "NotLeaderError",
    "PropagationTimeoutError",
    "RequestAbortedError",
    "ResponseTimeoutError",
    "TransactionNotFoundError",
    "TransactionStateError",
    "is_arango_error_body",
]
