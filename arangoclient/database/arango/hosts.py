"""Coordinator hosts and the pool that holds them.

Each :class:`Host` owns one ``httpx.AsyncClient`` bound to a coordinator
base URL. The :class:`HostPool` keeps hosts in insertion order, which is
both the round-robin order and the active-failover priority. The pool is
copy-on-write: every change builds a new tuple and swaps it in one step,
so a request that already holds a :class:`Host` is never disturbed.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable

import httpx

from .errors import FetchFailedError, RequestAbortedError, ResponseTimeoutError

logger = logging.getLogger(__name__)

_RAW_SCHEME = re.compile(r"^(tcp|ssl|tls)((?::|\+).+)")
_UNIX_SCHEME = re.compile(r"^(?:(https?)\+)?unix://(/.+)")
_UNIX_URL = re.compile(r"^https?://unix:(/.+)")

_CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


def normalize_url(url: str) -> str:
    """Normalize ArangoDB endpoint notations into plain HTTP(S) URLs.

    ``tcp://`` and ``ssl://``/``tls://`` endpoints (as reported by
    ``/_api/cluster/endpoints``) become ``http://`` and ``https://``;
    ``unix:///path`` and ``http+unix:///path`` become ``http://unix:/path``.
    """

    raw = _RAW_SCHEME.match(url)
    if raw:
        url = ("http" if raw.group(1) == "tcp" else "https") + raw.group(2)
    unix = _UNIX_SCHEME.match(url)
    if unix:
        url = f"{unix.group(1) or 'http'}://unix:{unix.group(2)}"
    return url.rstrip("/")


def unix_socket_path(url: str) -> str | None:
    """Return the socket path of a normalized ``http://unix:/path`` URL."""

    match = _UNIX_URL.match(url)
    return match.group(1) if match else None


class Host:
    """One coordinator endpoint and its persistent HTTP client.

    Requests go through :meth:`send`, which enforces the per-attempt timeout
    and maps transport failures onto the client's :class:`NetworkError`
    types. Closing the host aborts every pending request.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        limits: httpx.Limits | None = None,
        http2: bool = True,
    ) -> None:
        self.url = normalize_url(url)
        socket_path = unix_socket_path(self.url)

        # Over a Unix socket the host part of the URL is ignored by the server.
        if transport is None:
            transport = httpx.AsyncHTTPTransport(
                uds=socket_path,
                retries=0,
                http2=http2,
                limits=limits or httpx.Limits(),
            )
        base_url = "http://localhost" if socket_path else self.url

        self._client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout or httpx.Timeout(30.0, connect=5.0),
        )
        self._pending: set[asyncio.Task[httpx.Response]] = set()
        self._closed = False

    def __repr__(self) -> str:
        return f"Host({self.url!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._pending)

    def build_request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Request:
        return self._client.build_request(method, path, params=params, headers=headers, content=content)

    async def send(self, request: httpx.Request, timeout: float | None = None) -> httpx.Response:
        """Send ``request`` and return the fully read response.

        Raises:
            ResponseTimeoutError: ``timeout`` seconds elapsed or the read timed out
            FetchFailedError: the transport could not connect, send or receive
            RequestAbortedError: the host was closed while the request was pending
        """
        if self._closed:
            raise RequestAbortedError(f"Host {self.url} is closed", request)

        task = asyncio.ensure_future(self._client.send(request))
        self._pending.add(task)
        try:
            async with asyncio.timeout(timeout):
                return await task
        except TimeoutError as exc:
            raise ResponseTimeoutError(None, request) from exc
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and self._closed and (current is None or not current.cancelling()):
                raise RequestAbortedError(None, request) from None
            raise
        except _CONNECT_ERRORS as exc:
            raise FetchFailedError(f"Fetch failed: {exc}", request, is_safe_to_retry=True) from exc
        except httpx.TimeoutException as exc:
            raise ResponseTimeoutError(f"Timed out while waiting for server response: {exc}", request) from exc
        except httpx.TransportError as exc:
            raise FetchFailedError(f"Fetch failed: {exc}", request) from exc
        finally:
            self._pending.discard(task)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in list(self._pending):
            task.cancel()
        await self._client.aclose()


HostFactory = Callable[[str], Host]


class HostPool:
    """Ordered, URL-unique collection of :class:`Host` objects."""

    def __init__(self, host_factory: HostFactory = Host) -> None:
        self._host_factory = host_factory
        self._hosts: tuple[Host, ...] = ()

    def __len__(self) -> int:
        return len(self._hosts)

    def __getitem__(self, index: int) -> Host:
        return self._hosts[index]

    def __iter__(self):
        return iter(self._hosts)

    @property
    def hosts(self) -> tuple[Host, ...]:
        return self._hosts

    @property
    def urls(self) -> list[str]:
        return [host.url for host in self._hosts]

    def index_of(self, url: str) -> int:
        """Index of ``url`` in the pool, or -1."""
        url = normalize_url(url)
        for index, host in enumerate(self._hosts):
            if host.url == url:
                return index
        return -1

    def add_hosts(self, urls: str | Iterable[str]) -> list[str]:
        """Append hosts for URLs not yet in the pool.

        Returns:
            The normalized form of every given URL, in the given order.
        """
        if isinstance(urls, str):
            urls = [urls]
        clean_urls = [normalize_url(url) for url in urls]
        known = {host.url for host in self._hosts}
        added: list[Host] = []
        for url in clean_urls:
            if url in known:
                continue
            known.add(url)
            added.append(self._host_factory(url))
        if added:
            self._hosts = self._hosts + tuple(added)
            logger.info(f"Added {len(added)} host(s) to pool: {[host.url for host in added]}")
        return clean_urls

    async def set_hosts(self, urls: Iterable[str]) -> None:
        """Replace the pool, reusing hosts that remain and closing the rest."""
        by_url = {host.url: host for host in self._hosts}
        hosts: list[Host] = []
        for url in dict.fromkeys(normalize_url(url) for url in urls):
            hosts.append(by_url.pop(url, None) or self._host_factory(url))
        self._hosts = tuple(hosts)
        logger.info(f"Replaced host pool: {self.urls}")
        for dropped in by_url.values():
            await dropped.close()

    def promote(self, url: str) -> None:
        """Move ``url`` to index 0, keeping the relative order of the others."""
        index = self.index_of(url)
        if index <= 0:
            return
        hosts = list(self._hosts)
        leader = hosts.pop(index)
        self._hosts = (leader, *hosts)
        logger.info(f"Promoted {leader.url} to leader")

    async def close(self) -> None:
        """Close every host. Indices stay valid; later sends are aborted."""
        for host in self._hosts:
            await host.close()


__all__ = ["Host", "HostFactory", "HostPool", "normalize_url", "unix_socket_path"]
