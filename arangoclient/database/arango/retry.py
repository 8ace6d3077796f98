"""Attempt classification for the request executor.

Every attempt ends in exactly one :data:`Outcome`:

- :class:`Success` for a 2xx response,
- :class:`Retryable` when the policy allows another attempt,
- :class:`Fatal` with the error to surface to the caller.

The policy only decides; the executor loop in ``connection.py`` applies the
side effects (pool reordering, budget bookkeeping) and re-issues requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
import orjson

from .codes import ERROR_ARANGO_CONFLICT
from .errors import (
    ArangoError,
    ArangoHttpError,
    HttpError,
    NetworkError,
    NotLeaderError,
    RequestAbortedError,
    is_arango_error_body,
)
from .load_balancing import LoadBalancingStrategy


LEADER_ENDPOINT_HEADER = "x-arango-endpoint"
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class RetryReason(str, Enum):
    NETWORK = "network"
    NOT_LEADER = "not_leader"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class Attempt:
    """One try of a request against one host."""

    number: int
    host_index: int
    host_url: str
    elapsed: float
    response: httpx.Response | None = None
    error: NetworkError | None = None


@dataclass(frozen=True, slots=True)
class Success:
    response: httpx.Response


@dataclass(frozen=True, slots=True)
class Retryable:
    reason: RetryReason
    error: Exception
    leader_url: str | None = None


@dataclass(frozen=True, slots=True)
class Fatal:
    error: Exception


Outcome = Success | Retryable | Fatal


@dataclass(slots=True)
class RetryBudget:
    """Per-call retry bookkeeping."""

    max_retries: int
    conflict_retries: int = 0
    retries: int = 0
    redirected: bool = False
    pinned: bool = False
    history: list[Attempt] = field(default_factory=list)


def parse_body(response: httpx.Response) -> Any:
    """Decode a response body: JSON when declared as such, else text."""

    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type or "javascript" in content_type:
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError:
            return response.text
    return response.text


def error_from_response(response: httpx.Response) -> ArangoHttpError:
    """Decode an error response into the client's error types."""

    body = parse_body(response)
    if is_arango_error_body(body):
        return ArangoError.from_response(response.status_code, body)
    message = response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        message = body.get("errorMessage") or body.get("message") or message
    details = body if isinstance(body, dict) else {"message": body or message}
    return HttpError(response.status_code, message, details)


class RetryPolicy:
    """Decides whether a failed attempt is retried, and how.

    Args:
        strategy: Load balancing strategy of the connection
        max_retries: Network retry budget per call. ``None`` allows one retry
            per additional host in the pool; ``0`` disables network retries.
    """

    def __init__(
        self,
        strategy: LoadBalancingStrategy = LoadBalancingStrategy.NONE,
        max_retries: int | None = None,
    ) -> None:
        self.strategy = LoadBalancingStrategy.parse(strategy)
        self.max_retries = max_retries

    def budget(self, pool_size: int, *, retry_on_conflict: int = 0, pinned: bool = False) -> RetryBudget:
        max_retries = self.max_retries if self.max_retries is not None else max(pool_size - 1, 0)
        return RetryBudget(max_retries=max_retries, conflict_retries=max(retry_on_conflict, 0), pinned=pinned)

    def classify(self, attempt: Attempt, method: str, budget: RetryBudget, pool_size: int) -> Outcome:
        if attempt.error is not None:
            return self._classify_network_error(attempt.error, method, budget, pool_size)

        response = attempt.response
        if response is None:
            raise ValueError("Attempt carries neither a response nor an error")

        if response.is_success:
            return Success(response)

        leader_url = response.headers.get(LEADER_ENDPOINT_HEADER)
        if (
            response.status_code == 503
            and leader_url
            and self.strategy is LoadBalancingStrategy.ACTIVE_FAILOVER
        ):
            body = parse_body(response)
            details = body if isinstance(body, dict) else None
            if budget.redirected:
                return Fatal(NotLeaderError(leader_url, details))
            return Retryable(RetryReason.NOT_LEADER, NotLeaderError(leader_url, details), leader_url=leader_url)

        error = error_from_response(response)
        if (
            isinstance(error, ArangoError)
            and error.error_num == ERROR_ARANGO_CONFLICT
            and budget.conflict_retries > 0
        ):
            return Retryable(RetryReason.CONFLICT, error)
        return Fatal(error)

    def _classify_network_error(
        self,
        error: NetworkError,
        method: str,
        budget: RetryBudget,
        pool_size: int,
    ) -> Outcome:
        if isinstance(error, RequestAbortedError):
            return Fatal(error)
        safe = error.is_safe_to_retry or method.upper() in IDEMPOTENT_METHODS
        if (
            safe
            and not budget.pinned
            and pool_size > 1
            and budget.retries < budget.max_retries
        ):
            return Retryable(RetryReason.NETWORK, error)
        return Fatal(error)


__all__ = [
    "Attempt",
    "Fatal",
    "IDEMPOTENT_METHODS",
    "LEADER_ENDPOINT_HEADER",
    "Outcome",
    "Retryable",
    "RetryBudget",
    "RetryPolicy",
    "RetryReason",
    "Success",
    "error_from_response",
    "parse_body",
]
