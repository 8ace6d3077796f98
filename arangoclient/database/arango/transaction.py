"""Stream transaction handle.

A :class:`Transaction` tracks one server-side stream transaction. Work runs
through :meth:`Transaction.step`, which tags every request issued by the
step with the transaction id and routes it to the coordinator that began
the transaction.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import quote

from .codes import TRANSACTION_NOT_FOUND
from .connection import RequestOptions, transaction_scope
from .errors import ArangoError, TransactionStateError

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionStatus(str, Enum):
    RUNNING = "running"
    COMMITTED = "committed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.RUNNING


def coerce_collections(collections: str | list[str] | dict[str, Any]) -> dict[str, Any]:
    """Normalize the collections argument of a transaction begin request.

    A single name or a list of names is locked for writing; a mapping may
    carry ``read``, ``write``, ``exclusive`` and ``allowImplicit``.
    """
    if isinstance(collections, str):
        return {"write": [collections]}
    if isinstance(collections, (list, tuple)):
        return {"write": list(collections)}

    coerced: dict[str, Any] = {}
    for key in ("read", "write", "exclusive"):
        value = collections.get(key)
        if value:
            coerced[key] = [value] if isinstance(value, str) else list(value)
    if "allowImplicit" in collections:
        coerced["allowImplicit"] = collections["allowImplicit"]
    return coerced


class Transaction:
    """
    Handle for a server-side stream transaction.

    Handles created by :meth:`Database.begin_transaction` start as running;
    handles created by :meth:`Database.transaction` from a bare id have an
    unknown status until :meth:`get` is called. Several handles may refer to
    the same server-side transaction.

    Args:
        db: Database the transaction belongs to
        transaction_id: Server-assigned transaction id
        host_url: Coordinator the transaction is pinned to
        status: Last known status, if any
    """

    def __init__(
        self,
        db: Database,
        transaction_id: str,
        host_url: str | None = None,
        status: TransactionStatus | str | None = None,
    ) -> None:
        self._db = db
        self._id = transaction_id
        self._host_url = host_url
        self._status = TransactionStatus(status) if status is not None else None

    def __repr__(self) -> str:
        status = self._status.value if self._status else "unknown"
        return f"Transaction(id={self._id!r}, status={status})"

    @property
    def database(self) -> Database:
        return self._db

    @property
    def id(self) -> str:
        return self._id

    @property
    def host_url(self) -> str | None:
        return self._host_url

    @property
    def status(self) -> TransactionStatus | None:
        """Last status seen by this handle, or None if never observed."""
        return self._status

    def _path(self) -> str:
        return f"/_api/transaction/{quote(self._id, safe='')}"

    def _update(self, result: dict[str, Any]) -> dict[str, Any]:
        status = result.get("status")
        if status:
            self._status = TransactionStatus(status)
        return result

    def _require_running(self, action: str) -> None:
        if self._status is not None and self._status.is_terminal:
            raise TransactionStateError(
                f"Cannot {action} transaction {self._id}: already {self._status.value}"
            )

    async def get(self) -> dict[str, Any]:
        """Fetch the transaction's id and status from the server."""
        body = await self._db.request(RequestOptions(path=self._path(), host_url=self._host_url))
        return self._update(body["result"])

    async def exists(self) -> bool:
        try:
            await self.get()
        except ArangoError as e:
            if e.error_num == TRANSACTION_NOT_FOUND:
                return False
            raise
        return True

    async def commit(self, *, allow_dirty_read: bool = False) -> dict[str, Any]:
        """
        Commit the transaction.

        Raises:
            TransactionStateError: If this handle already committed or aborted
        """
        self._require_running("commit")
        body = await self._db.request(
            RequestOptions(
                method="PUT",
                path=self._path(),
                host_url=self._host_url,
                allow_dirty_read=allow_dirty_read,
            )
        )
        result = self._update(body["result"])
        logger.debug(f"Transaction {self._id} committed")
        return result

    async def abort(self, *, allow_dirty_read: bool = False) -> dict[str, Any]:
        """
        Abort the transaction.

        Raises:
            TransactionStateError: If this handle already committed or aborted
        """
        self._require_running("abort")
        body = await self._db.request(
            RequestOptions(
                method="DELETE",
                path=self._path(),
                host_url=self._host_url,
                allow_dirty_read=allow_dirty_read,
            )
        )
        result = self._update(body["result"])
        logger.debug(f"Transaction {self._id} aborted")
        return result

    async def step(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` inside the transaction.

        Every request ``fn`` issues, including requests from tasks it
        spawns, carries the transaction id and goes to the transaction's
        coordinator.

        Raises:
            TypeError: If ``fn()`` does not return an awaitable
            TransactionStateError: If the transaction is no longer running
        """
        self._require_running("run a step in")
        with transaction_scope(self._id, self._host_url):
            pending = fn()
            if not inspect.isawaitable(pending):
                raise TypeError(
                    "Transaction step must be an async function or return an awaitable, "
                    f"got {type(pending).__name__}"
                )
            return await pending


__all__ = ["Transaction", "TransactionStatus", "coerce_collections"]
