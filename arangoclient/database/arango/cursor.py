"""Lazy, batch-preserving cursors over ``/_api/cursor`` results.

:class:`BatchCursor` owns the server-side cursor id and yields the result
set one server batch at a time; :class:`Cursor` flattens the same buffer
into single items through a :class:`BatchCursorItemsView`. Batches are only
fetched when the local buffer runs dry, and every "more" request is pinned
to the coordinator that created the cursor.

Driving one cursor instance from several concurrent tasks is not supported.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from urllib.parse import quote

from .connection import RequestOptions

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_MISSING: Any = object()


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class BatchCursorItemsView(Generic[T]):
    """Pull-based access to the items buffered by a :class:`BatchCursor`."""

    def __init__(self, cursor: BatchCursor[T]) -> None:
        self._cursor = cursor

    @property
    def is_empty(self) -> bool:
        return not self._cursor._batches

    async def more(self) -> None:
        await self._cursor._more()

    def shift(self) -> T | None:
        """Remove and return the oldest buffered item, or None."""
        batches = self._cursor._batches
        while batches and not batches[0]:
            batches.popleft()
        if not batches:
            return None
        batch = batches[0]
        value = batch.popleft()
        if not batch:
            batches.popleft()
        return value


class BatchCursor(Generic[T]):
    """
    Batch-wise view of a query result set.

    Created by :meth:`Database.query` from the initial cursor response.
    Batches beyond the first are fetched on demand; the total number of
    "more" requests never exceeds the number of remaining server batches.

    Args:
        db: Database the query ran against
        body: Initial ``/_api/cursor`` response body
        host_url: URL of the coordinator holding the cursor
        allow_dirty_read: Whether follow-up reads may be served by followers
    """

    def __init__(
        self,
        db: Database,
        body: dict[str, Any],
        host_url: str | None = None,
        allow_dirty_read: bool = False,
    ) -> None:
        result = body.get("result") or []
        self._db = db
        self._batches: deque[deque[T]] = deque([deque(result)] if result else [])
        self._id: str | None = body.get("id")
        self._has_more = bool(self._id and body.get("hasMore"))
        self._next_batch_id: str | None = body.get("nextBatchId")
        self._host_url = host_url
        self._count: int | None = body.get("count")
        self._extra: dict[str, Any] = body.get("extra") or {}
        self._allow_dirty_read = allow_dirty_read
        self._items = Cursor(self, BatchCursorItemsView(self))

    def __repr__(self) -> str:
        return f"BatchCursor(id={self._id!r}, has_more={self._has_more}, buffered={len(self._batches)})"

    async def _more(self) -> None:
        if not self._id or not self._has_more:
            return
        path = f"/_api/cursor/{quote(self._id, safe='')}"
        if self._next_batch_id:
            path = f"{path}/{self._next_batch_id}"
        body = await self._db.request(
            RequestOptions(
                method="POST",
                path=path,
                host_url=self._host_url,
                allow_dirty_read=self._allow_dirty_read,
            )
        )
        if result := body.get("result"):
            self._batches.append(deque(result))
        self._has_more = bool(body.get("hasMore"))
        self._next_batch_id = body.get("nextBatchId")
        if "extra" in body:
            self._extra = body["extra"] or {}
        logger.debug(f"Fetched batch for cursor {self._id} (has_more={self._has_more})")

    @property
    def database(self) -> Database:
        return self._db

    @property
    def id(self) -> str | None:
        return self._id

    @property
    def host_url(self) -> str | None:
        return self._host_url

    @property
    def items(self) -> Cursor[T]:
        """Item-wise cursor over the same result set."""
        return self._items

    @property
    def items_view(self) -> BatchCursorItemsView[T]:
        return self._items._view

    @property
    def extra(self) -> dict[str, Any]:
        """Warnings, statistics, profile and plan reported by the server."""
        return self._extra

    @property
    def count(self) -> int | None:
        """Total result count, only set when the query asked for it."""
        return self._count

    @property
    def has_more(self) -> bool:
        """Whether batches remain on the server."""
        return self._has_more

    @property
    def has_next(self) -> bool:
        """Whether any batch remains, buffered or on the server."""
        return self._has_more or bool(self._batches)

    async def more(self) -> None:
        """Fetch the next server batch into the buffer."""
        await self._more()

    async def load_all(self) -> None:
        """Fetch every remaining batch into the local buffer."""
        while self._has_more:
            await self._more()

    async def next(self) -> list[T] | None:
        """Return the oldest buffered batch, fetching one if needed."""
        while not self._batches and self.has_next:
            await self._more()
        if not self._batches:
            return None
        return list(self._batches.popleft())

    async def all(self) -> list[list[T]]:
        """Drain every remaining batch.

        Loads the whole remaining result set into memory; avoid for large
        results.
        """
        return await self.map(lambda batch: batch)

    async def for_each(self, callback: Callable[[list[T]], Any]) -> bool:
        """Call ``callback`` for each batch until it returns ``False``.

        Returns:
            False if the callback stopped the iteration, True otherwise
        """
        while self.has_next:
            batch = await self.next()
            if batch is None:
                break
            if await _resolve(callback(batch)) is False:
                return False
        return True

    async def map(self, callback: Callable[[list[T]], R]) -> list[R]:
        results: list[R] = []
        while self.has_next:
            batch = await self.next()
            if batch is None:
                break
            results.append(await _resolve(callback(batch)))
        return results

    async def flat_map(self, callback: Callable[[list[T]], Any]) -> list[Any]:
        """Like :meth:`map`, but list results are spliced into the output."""
        results: list[Any] = []
        while self.has_next:
            batch = await self.next()
            if batch is None:
                break
            value = await _resolve(callback(batch))
            if isinstance(value, list):
                results.extend(value)
            else:
                results.append(value)
        return results

    async def reduce(self, reducer: Callable[[Any, list[T]], Any], initial: Any = _MISSING) -> Any:
        """Fold all batches; without ``initial`` the first batch seeds it."""
        if initial is _MISSING:
            value = await self.next()
            if value is None:
                return None
        else:
            value = initial
        while self.has_next:
            batch = await self.next()
            if batch is None:
                break
            value = await _resolve(reducer(value, batch))
        return value

    def __aiter__(self) -> AsyncIterator[list[T]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[list[T]]:
        while self.has_next:
            batch = await self.next()
            if batch is None:
                return
            yield batch

    async def kill(self) -> None:
        """Discard buffered batches and delete the server-side cursor.

        Safe to call repeatedly; only a cursor with batches left on the
        server causes a request.
        """
        self._batches.clear()
        if not self._has_more:
            return
        await self._db.request(
            RequestOptions(
                method="DELETE",
                path=f"/_api/cursor/{quote(self._id or '', safe='')}",
                host_url=self._host_url,
            )
        )
        self._has_more = False
        logger.debug(f"Killed cursor {self._id}")

    async def __aenter__(self) -> BatchCursor[T]:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.kill()
        except Exception as kill_error:
            logger.warning(f"Failed to kill cursor {self._id}: {kill_error}", extra={"cursor_id": self._id})


class Cursor(Generic[T]):
    """
    Item-wise view of a query result set.

    Returned by :meth:`Database.query`. Shares its buffer with the
    :class:`BatchCursor` available as :attr:`batches`, so consuming from
    either advances both.
    """

    def __init__(self, batches: BatchCursor[T], view: BatchCursorItemsView[T]) -> None:
        self._batches = batches
        self._view = view

    def __repr__(self) -> str:
        return f"Cursor(id={self.id!r}, has_next={self.has_next})"

    @property
    def batches(self) -> BatchCursor[T]:
        return self._batches

    @property
    def database(self) -> Database:
        return self._batches.database

    @property
    def id(self) -> str | None:
        return self._batches.id

    @property
    def extra(self) -> dict[str, Any]:
        return self._batches.extra

    @property
    def count(self) -> int | None:
        return self._batches.count

    @property
    def has_more(self) -> bool:
        return self._batches.has_more

    @property
    def has_next(self) -> bool:
        return self._batches.has_next

    async def _take(self) -> Any:
        while self._view.is_empty and self._batches.has_more:
            await self._view.more()
        if self._view.is_empty:
            return _MISSING
        return self._view.shift()

    async def next(self) -> T | None:
        """Return the next item, fetching a batch when the buffer is empty."""
        value = await self._take()
        return None if value is _MISSING else value

    async def all(self) -> list[T]:
        """Drain every remaining item into one list."""
        return await self._batches.flat_map(lambda batch: batch)

    async def for_each(self, callback: Callable[[T], Any]) -> bool:
        while (value := await self._take()) is not _MISSING:
            if await _resolve(callback(value)) is False:
                return False
        return True

    async def map(self, callback: Callable[[T], R]) -> list[R]:
        results: list[R] = []
        while (value := await self._take()) is not _MISSING:
            results.append(await _resolve(callback(value)))
        return results

    async def flat_map(self, callback: Callable[[T], Any]) -> list[Any]:
        results: list[Any] = []
        while (value := await self._take()) is not _MISSING:
            mapped = await _resolve(callback(value))
            if isinstance(mapped, list):
                results.extend(mapped)
            else:
                results.append(mapped)
        return results

    async def reduce(self, reducer: Callable[[Any, T], Any], initial: Any = _MISSING) -> Any:
        """Fold all items; without ``initial`` the first item seeds it."""
        value = await self._take() if initial is _MISSING else initial
        if value is _MISSING:
            return None
        while (item := await self._take()) is not _MISSING:
            value = await _resolve(reducer(value, item))
        return value

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while (value := await self._take()) is not _MISSING:
            yield value

    async def kill(self) -> None:
        await self._batches.kill()

    async def __aenter__(self) -> Cursor[T]:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._batches.__aexit__(exc_type, exc, tb)


__all__ = ["BatchCursor", "BatchCursorItemsView", "Cursor"]
