"""Request executor for an ArangoDB cluster.

A :class:`Connection` owns the client state shared by every database
handle: the coordinator :class:`HostPool`, the :class:`LoadBalancer`
selection state and the :class:`QueueTimeTracker`. Each call to
:meth:`Connection.request` is one logical request that may span several
attempts; :class:`RetryPolicy` classifies every attempt and the loop here
applies the resulting action.
"""

from __future__ import annotations

import asyncio
import base64
import inspect
import logging
import os
import time
import traceback
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

import httpx
import orjson

from ...config.client_config import ClientConfig
from .errors import ArangoHttpError, NetworkError, PropagationTimeoutError
from .hosts import Host, HostPool
from .load_balancing import LoadBalancer, LoadBalancingState, LoadBalancingStrategy
from .queue_time import QueueTimeTracker
from .retry import Attempt, Fatal, Retryable, RetryPolicy, RetryReason, Success, parse_body

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUEUE_TIME_HEADER = "x-arango-queue-time-seconds"
TRANSACTION_ID_HEADER = "x-arango-trx-id"
DIRTY_READ_HEADER = "x-arango-allow-dirty-read"


@dataclass(frozen=True, slots=True)
class TransactionContext:
    transaction_id: str
    host_url: str | None = None


_current_transaction: ContextVar[TransactionContext | None] = ContextVar("arango_transaction", default=None)


@contextmanager
def transaction_scope(transaction_id: str, host_url: str | None = None) -> Iterator[TransactionContext]:
    """Tag every request issued inside the block with a stream transaction.

    Tasks created inside the block inherit the scope, tasks created
    outside it do not.
    """
    context = TransactionContext(transaction_id, host_url)
    token = _current_transaction.set(context)
    try:
        yield context
    finally:
        _current_transaction.reset(token)


def current_transaction() -> TransactionContext | None:
    return _current_transaction.get()


@dataclass(slots=True)
class RequestOptions:
    """One logical request, before host selection."""

    method: str = "GET"
    path: str = ""
    base_path: str | None = None
    body: Any = None
    is_binary: bool = False
    expect_binary: bool = False
    headers: dict[str, str] | None = None
    params: dict[str, Any] | None = None
    host_url: str | None = None
    allow_dirty_read: bool = False
    retry_on_conflict: int | None = None
    timeout: float | None = None


@dataclass(slots=True)
class ProcessedResponse:
    """A successful response with its parsed body and routing metadata."""

    status: int
    headers: httpx.Headers
    body: Any
    host_url: str
    host_index: int
    request: httpx.Request
    queue_time: float | None = None


@dataclass(slots=True)
class ClientState:
    """Mutable state shared by all requests of one connection."""

    pool: HostPool
    balancer: LoadBalancer
    queue_times: QueueTimeTracker = field(default_factory=QueueTimeTracker)


def join_path(*parts: str | None) -> str:
    """Join URL path segments with single slashes, keeping a leading slash."""
    segments = [part.strip("/") for part in parts if part]
    return "/" + "/".join(segment for segment in segments if segment)


def _encode_params(params: dict[str, Any] | None) -> dict[str, str] | None:
    if not params:
        return None
    encoded: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _attempt_fields(attempt: Attempt, reason: RetryReason) -> dict[str, Any]:
    return {"host_url": attempt.host_url, "attempt": attempt.number, "retry_reason": reason.value}


def _default_pool_size(strategy: LoadBalancingStrategy, host_count: int) -> int:
    return 3 * (max(host_count, 1) if strategy is LoadBalancingStrategy.ROUND_ROBIN else 1)


class Connection:
    """Connection pool spanning every configured coordinator.

    Args:
        config: Client configuration (defaults to a single local coordinator)
        transport: Optional httpx transport used by every host, e.g.
            ``httpx.MockTransport`` in tests
        limits: Optional httpx connection limits per host
        rng: Random source for ``ONE_RANDOM`` selection
        before_request: Called with every outgoing ``httpx.Request``
        after_response: Called after every attempt with ``(error, response)``
        on_error: Called with the final error of a failed request; an
            exception it raises replaces that error

    Raises:
        ConfigurationError: If the strategy does not accept the configured URLs
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        limits: httpx.Limits | None = None,
        rng: Any = None,
        before_request: Callable[[httpx.Request], Any] | None = None,
        after_response: Callable[[NetworkError | None, httpx.Response | None], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        strategy = self._config.strategy
        self._timeout = httpx.Timeout(
            connect=self._config.connect_timeout,
            read=self._config.read_timeout,
            write=self._config.write_timeout,
            pool=self._config.connect_timeout,
        )
        self._transport = transport
        self._limits = limits

        balancer = LoadBalancer(strategy, LoadBalancingState(), rng=rng)
        urls = self._config.urls
        balancer.validate_pool_size(len(urls))

        self._state = ClientState(
            pool=HostPool(self._create_host),
            balancer=balancer,
            queue_times=QueueTimeTracker(self._config.response_queue_time_samples),
        )
        self._state.pool.add_hosts(urls)
        self._retry_policy = RetryPolicy(strategy, self._config.max_retries)
        self._retry_on_conflict = self._config.retry_on_conflict
        self._precapture_stack_traces = self._config.precapture_stack_traces
        self._before_request = before_request
        self._after_response = after_response
        self._on_error = on_error
        self._slots = asyncio.Semaphore(self._config.pool_size or _default_pool_size(strategy, len(urls)))

        user_agent = os.environ.get("ARANGO_HTTP_USER_AGENT", "arangoclient-python/1.0")
        self._headers: dict[str, str] = {
            "user-agent": user_agent,
            "x-arango-version": str(self._config.arango_version),
            "x-arango-driver": user_agent,
        }
        self._headers.update({name.lower(): value for name, value in self._config.headers.items()})
        if self._config.token:
            self.set_bearer_auth(self._config.token)
        elif self._config.username:
            self.set_basic_auth(self._config.username, self._config.password or "")

    def _create_host(self, url: str) -> Host:
        return Host(
            url,
            timeout=self._timeout,
            transport=self._transport,
            limits=self._limits,
            http2=self._config.http2,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def pool(self) -> HostPool:
        return self._state.pool

    @property
    def queue_time(self) -> QueueTimeTracker:
        return self._state.queue_times

    @property
    def strategy(self) -> LoadBalancingStrategy:
        return self._state.balancer.strategy

    def set_response_queue_time_samples(self, samples: int) -> None:
        self._state.queue_times.set_capacity(samples)

    def set_header(self, name: str, value: str | None) -> None:
        """Set a default header, or remove it when ``value`` is None."""
        if value is None:
            self._headers.pop(name.lower(), None)
        else:
            self._headers[name.lower()] = value

    def set_basic_auth(self, username: str, password: str = "") -> None:
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        self.set_header("authorization", f"Basic {credentials}")

    def set_bearer_auth(self, token: str) -> None:
        self.set_header("authorization", f"Bearer {token}")

    def add_to_host_list(self, urls: str | Iterable[str]) -> list[str]:
        return self._state.pool.add_hosts(urls)

    async def set_host_list(self, urls: Iterable[str]) -> None:
        await self._state.pool.set_hosts(urls)

    async def close(self) -> None:
        await self._state.pool.close()

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def _build_headers(self, options: RequestOptions, transaction: TransactionContext | None) -> dict[str, str]:
        headers = dict(self._headers)
        if options.headers:
            headers.update({name.lower(): value for name, value in options.headers.items()})
        if transaction is not None:
            headers[TRANSACTION_ID_HEADER] = transaction.transaction_id
        if options.allow_dirty_read:
            headers[DIRTY_READ_HEADER] = "true"
        return headers

    @staticmethod
    def _encode_body(options: RequestOptions, headers: dict[str, str]) -> bytes | None:
        body = options.body
        if body is None:
            return None
        if options.is_binary or isinstance(body, (bytes, bytearray)):
            content, content_type = bytes(body), "application/octet-stream"
        elif isinstance(body, str):
            content, content_type = body.encode("utf-8"), "text/plain"
        else:
            content, content_type = orjson.dumps(body), "application/json"
        headers.setdefault("content-type", content_type)
        return content

    def _resolve_host(self, url: str) -> int:
        pool = self._state.pool
        index = pool.index_of(url)
        if index == -1:
            pool.add_hosts([url])
            index = pool.index_of(url)
        return index

    async def request(
        self,
        options: RequestOptions,
        transform: Callable[[ProcessedResponse], T] | None = None,
    ) -> T:
        """Perform one logical request and return ``transform(response)``.

        Without a transform the parsed response body is returned.

        Raises:
            ConfigurationError: If the pool is empty
            NetworkError: On transport failures that could not be retried
            ArangoHttpError: On error responses (decoded ``ArangoError`` when
                the body carries an ``errorNum``)
        """
        stack = traceback.format_stack()[:-1] if self._precapture_stack_traces else None
        transaction = _current_transaction.get()
        headers = self._build_headers(options, transaction)
        content = self._encode_body(options, headers)
        params = _encode_params(options.params)
        path = join_path(options.base_path, options.path)
        method = options.method.upper()

        target_url = options.host_url or (transaction.host_url if transaction else None)
        retry_on_conflict = self._retry_on_conflict if options.retry_on_conflict is None else options.retry_on_conflict
        budget = self._retry_policy.budget(
            len(self._state.pool),
            retry_on_conflict=retry_on_conflict,
            pinned=target_url is not None,
        )
        failed_index: int | None = None

        while True:
            pool = self._state.pool
            pool_size = len(pool)
            if target_url is not None:
                index = self._resolve_host(target_url)
            elif failed_index is not None:
                index = self._state.balancer.failover_index(failed_index, pool_size)
            elif options.allow_dirty_read:
                index = self._state.balancer.select_dirty_host(pool_size)
            else:
                index = self._state.balancer.select_host(pool_size)
            host = pool[index]

            request = host.build_request(method, path, params=params, headers=headers, content=content)
            if self._before_request is not None:
                await _resolve(self._before_request(request))
            started = time.monotonic()
            async with self._slots:
                try:
                    response = await host.send(request, options.timeout)
                except NetworkError as exc:
                    attempt = Attempt(len(budget.history) + 1, index, host.url, time.monotonic() - started, error=exc)
                else:
                    attempt = Attempt(len(budget.history) + 1, index, host.url, time.monotonic() - started, response=response)
            budget.history.append(attempt)
            if self._after_response is not None:
                await _resolve(self._after_response(attempt.error, attempt.response))

            match self._retry_policy.classify(attempt, method, budget, pool_size):
                case Success(response=response):
                    logger.debug(
                        f"{method} {path} -> {response.status_code} via {host.url} "
                        f"(attempt {attempt.number}, {attempt.elapsed * 1000:.1f}ms)"
                    )
                    return self._finish(response, host, index, options, transform)

                case Fatal(error=error):
                    raise await self._surface(error, method, path, stack)

                case Retryable(reason=RetryReason.NOT_LEADER, leader_url=leader_url):
                    [leader_url] = pool.add_hosts([leader_url])
                    pool.promote(leader_url)
                    budget.redirected = True
                    budget.pinned = True
                    target_url = leader_url
                    logger.warning(
                        f"{host.url} is not the leader, redirecting {method} {path} to {leader_url}",
                        extra=_attempt_fields(attempt, RetryReason.NOT_LEADER),
                    )

                case Retryable(reason=RetryReason.CONFLICT):
                    budget.conflict_retries -= 1
                    target_url = host.url
                    logger.warning(
                        f"Write-write conflict on {method} {path}, retrying "
                        f"({budget.conflict_retries} conflict retries left)",
                        extra=_attempt_fields(attempt, RetryReason.CONFLICT),
                    )

                case Retryable(reason=reason, error=error):
                    budget.retries += 1
                    failed_index = index
                    target_url = None
                    logger.warning(
                        f"{method} {path} failed on {host.url}: {error}; "
                        f"retry {budget.retries}/{budget.max_retries} on another host",
                        extra=_attempt_fields(attempt, reason),
                    )

    def _finish(
        self,
        response: httpx.Response,
        host: Host,
        index: int,
        options: RequestOptions,
        transform: Callable[[ProcessedResponse], T] | None,
    ) -> T:
        queue_time: float | None = None
        raw_queue_time = response.headers.get(QUEUE_TIME_HEADER)
        if raw_queue_time:
            try:
                queue_time = float(raw_queue_time)
            except ValueError:
                logger.debug(f"Ignoring malformed queue time header {raw_queue_time!r}")
            else:
                self._state.queue_times.record(queue_time)

        if options.expect_binary:
            body: Any = response.content
        else:
            body = parse_body(response)

        processed = ProcessedResponse(
            status=response.status_code,
            headers=response.headers,
            body=body,
            host_url=host.url,
            host_index=index,
            request=response.request,
            queue_time=queue_time,
        )
        if transform is None:
            return processed.body
        return transform(processed)

    async def _surface(self, error: Exception, method: str, path: str, stack: list[str] | None) -> Exception:
        if stack:
            error.add_note("Request issued at:\n" + "".join(stack).rstrip())
        if isinstance(error, NetworkError):
            logger.error(f"{method} {path} failed: {error}")
        else:
            logger.debug(f"{method} {path} failed: {error}")
        if self._on_error is not None:
            try:
                await _resolve(self._on_error(error))
            except Exception as hook_error:
                raise hook_error from error
        return error

    async def wait_for_propagation(
        self,
        options: RequestOptions,
        timeout: float | None = None,
        *,
        interval: float = 1.0,
    ) -> None:
        """Repeat ``options`` against every coordinator until each succeeds once.

        Raises:
            PropagationTimeoutError: If ``timeout`` seconds pass first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        propagated: set[str] = set()
        index = 0
        while True:
            urls = self._state.pool.urls
            pending = [url for url in urls if url not in propagated]
            if not pending:
                return
            url = pending[index % len(pending)]
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            try:
                await self.request(replace(options, host_url=url, timeout=remaining))
            except (NetworkError, ArangoHttpError) as exc:
                if deadline is not None and time.monotonic() >= deadline:
                    raise PropagationTimeoutError() from exc
                index += 1
                await asyncio.sleep(interval)
                continue
            propagated.add(url)


__all__ = [
    "ClientState",
    "Connection",
    "ProcessedResponse",
    "RequestOptions",
    "TransactionContext",
    "current_transaction",
    "join_path",
    "transaction_scope",
]
