"""Database handle: request prefixing, queries, transactions and cluster discovery.

The handle is a thin layer over :class:`Connection`. Every request is
prefixed with ``/_db/{name}``; query results come back as lazy
:class:`Cursor` objects and stream transactions as :class:`Transaction`
handles. Only a minimal document API is provided.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
import orjson

from ...config.client_config import ClientConfig
from .connection import Connection, ProcessedResponse, RequestOptions
from .cursor import BatchCursor, Cursor
from .queue_time import QueueTimeTracker
from .transaction import Transaction, TransactionStatus, coerce_collections

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database:
    """
    Async client for one ArangoDB database.

    Either pass a :class:`ClientConfig` (a new :class:`Connection` is
    created and owned by this handle) or share an existing connection.
    Handles for other databases on the same connection come from
    :meth:`database`.

    Args:
        config: Client configuration, ignored when ``connection`` is given
        connection: Existing connection to share
        name: Database name (defaults to ``config.database_name``)
        transport: Optional httpx transport for a newly created connection
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        connection: Connection | None = None,
        name: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._connection = connection or Connection(config, transport=transport)
        self._name = name or self._connection.config.database_name
        self._base_path = f"/_db/{quote(self._name, safe='')}"

    def __repr__(self) -> str:
        return f"Database({self._name!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def queue_time(self) -> QueueTimeTracker:
        """Server-reported queue times of recent responses."""
        return self._connection.queue_time

    def database(self, name: str) -> Database:
        """Handle for another database sharing this connection."""
        return Database(connection=self._connection, name=name)

    def set_response_queue_time_samples(self, samples: int) -> None:
        self._connection.set_response_queue_time_samples(samples)

    async def close(self) -> None:
        await self._connection.close()

    async def __aenter__(self) -> Database:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        options: RequestOptions,
        transform: Callable[[ProcessedResponse], T] | None = None,
    ) -> T:
        """Perform a request scoped to this database."""
        if options.base_path is None:
            options = replace(options, base_path=self._base_path)
        return await self._connection.request(options, transform)

    async def wait_for_propagation(self, options: RequestOptions, timeout: float | None = None) -> None:
        """Repeat a request until every coordinator has answered it successfully."""
        if options.base_path is None:
            options = replace(options, base_path=self._base_path)
        await self._connection.wait_for_propagation(options, timeout)

    async def acquire_host_list(self, overwrite: bool = False) -> list[str]:
        """
        Refresh the host pool from ``/_api/cluster/endpoints``.

        Args:
            overwrite: Replace the pool instead of adding newly discovered hosts

        Returns:
            Normalized coordinator URLs reported by the cluster
        """
        body = await self.request(RequestOptions(path="/_api/cluster/endpoints"))
        urls = [entry["endpoint"] for entry in body.get("endpoints", [])]
        if overwrite:
            await self._connection.set_host_list(urls)
            return self._connection.pool.urls
        return self._connection.add_to_host_list(urls)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(
        self,
        query: str,
        bind_vars: dict[str, Any] | None = None,
        *,
        batch_size: int | None = None,
        count: bool = False,
        full_count: bool | None = None,
        ttl: float | None = None,
        allow_dirty_read: bool = False,
        retry_on_conflict: int | None = None,
        timeout: float | None = None,
        options: dict[str, Any] | None = None,
    ) -> Cursor:
        """
        Run an AQL query and return a lazy cursor over its results.

        Args:
            query: AQL query string
            bind_vars: Bind parameters
            batch_size: Maximum items per server batch
            count: Ask the server for the total result count
            full_count: Report the count ignoring the final LIMIT
            ttl: Seconds the server keeps an idle cursor alive
            allow_dirty_read: Allow follower reads for the query and its batches
            retry_on_conflict: Conflict retries for this query
            timeout: Per-attempt timeout in seconds
            options: Extra query options passed through unchanged

        Returns:
            Item-wise :class:`Cursor`; ``cursor.batches`` gives batch access
        """
        payload: dict[str, Any] = {"query": query, "bindVars": bind_vars or {}}
        if count:
            payload["count"] = True
        if batch_size is not None:
            payload["batchSize"] = batch_size
        if ttl is not None:
            payload["ttl"] = ttl
        query_options = dict(options or {})
        if full_count is not None:
            query_options["fullCount"] = full_count
        if query_options:
            payload["options"] = query_options

        return await self.request(
            RequestOptions(
                method="POST",
                path="/_api/cursor",
                body=payload,
                allow_dirty_read=allow_dirty_read,
                retry_on_conflict=retry_on_conflict,
                timeout=timeout,
            ),
            lambda res: BatchCursor(self, res.body, res.host_url, allow_dirty_read).items,
        )

    # ------------------------------------------------------------------
    # Stream transactions
    # ------------------------------------------------------------------

    async def begin_transaction(
        self,
        collections: str | list[str] | dict[str, Any],
        *,
        allow_implicit: bool | None = None,
        wait_for_sync: bool | None = None,
        lock_timeout: int | None = None,
        max_transaction_size: int | None = None,
        skip_fast_lock_round: bool | None = None,
        allow_dirty_read: bool = False,
    ) -> Transaction:
        """
        Begin a stream transaction, pinned to the coordinator that answers.

        Args:
            collections: A collection name or list of names to write, or a
                mapping with ``read``, ``write`` and ``exclusive`` lists
        """
        payload: dict[str, Any] = {"collections": coerce_collections(collections)}
        for key, value in (
            ("allowImplicit", allow_implicit),
            ("waitForSync", wait_for_sync),
            ("lockTimeout", lock_timeout),
            ("maxTransactionSize", max_transaction_size),
            ("skipFastLockRound", skip_fast_lock_round),
        ):
            if value is not None:
                payload[key] = value

        def to_transaction(res: ProcessedResponse) -> Transaction:
            result = res.body["result"]
            return Transaction(self, result["id"], res.host_url, result.get("status", TransactionStatus.RUNNING))

        transaction = await self.request(
            RequestOptions(
                method="POST",
                path="/_api/transaction/begin",
                body=payload,
                allow_dirty_read=allow_dirty_read,
            ),
            to_transaction,
        )
        logger.debug(f"Began transaction {transaction.id} on {transaction.host_url}")
        return transaction

    def transaction(self, transaction_id: str, host_url: str | None = None) -> Transaction:
        """Handle for an existing transaction; its status is unknown until fetched."""
        return Transaction(self, transaction_id, host_url)

    async def with_transaction(
        self,
        collections: str | list[str] | dict[str, Any],
        callback: Callable[[Transaction], Awaitable[T]],
        **options: Any,
    ) -> T:
        """
        Begin a transaction, run ``callback`` inside it and commit.

        The transaction is aborted when the callback or the commit fails;
        the original error is re-raised.
        """
        transaction = await self.begin_transaction(collections, **options)
        try:
            result = await transaction.step(lambda: callback(transaction))
            await transaction.commit()
        except Exception:
            if transaction.status is TransactionStatus.RUNNING:
                try:
                    await transaction.abort()
                except Exception as abort_error:
                    logger.warning(
                        f"Failed to abort transaction {transaction.id}: {abort_error}",
                        extra={"transaction_id": transaction.id},
                    )
            raise
        return result

    async def list_transactions(self) -> list[dict[str, Any]]:
        """Ids and states of the running stream transactions."""
        body = await self.request(RequestOptions(path="/_api/transaction"))
        return body.get("transactions", [])

    async def transactions(self) -> list[Transaction]:
        return [
            Transaction(self, info["id"], status=info.get("state"))
            for info in await self.list_transactions()
        ]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @staticmethod
    def _document_path(collection: str, key: str | None = None) -> str:
        path = f"/_api/document/{quote(collection, safe='')}"
        if key is not None:
            path = f"{path}/{quote(key, safe='')}"
        return path

    async def get_document(self, collection: str, key: str, *, allow_dirty_read: bool = False) -> dict[str, Any]:
        """Fetch a single document by collection/key."""
        return await self.request(
            RequestOptions(path=self._document_path(collection, key), allow_dirty_read=allow_dirty_read)
        )

    async def insert_document(
        self,
        collection: str,
        document: dict[str, Any],
        *,
        overwrite: bool = False,
        return_new: bool = False,
        retry_on_conflict: int | None = None,
    ) -> dict[str, Any]:
        """Insert one document and return its metadata."""
        return await self.request(
            RequestOptions(
                method="POST",
                path=self._document_path(collection),
                body=document,
                params={"overwrite": overwrite, "returnNew": return_new},
                retry_on_conflict=retry_on_conflict,
            )
        )

    async def update_document(
        self,
        collection: str,
        key: str,
        patch: dict[str, Any],
        *,
        return_new: bool = False,
        retry_on_conflict: int | None = None,
    ) -> dict[str, Any]:
        """Partially update a document (``PATCH``)."""
        return await self.request(
            RequestOptions(
                method="PATCH",
                path=self._document_path(collection, key),
                body=patch,
                params={"returnNew": return_new},
                retry_on_conflict=retry_on_conflict,
            )
        )

    async def remove_document(
        self,
        collection: str,
        key: str,
        *,
        retry_on_conflict: int | None = None,
    ) -> dict[str, Any]:
        return await self.request(
            RequestOptions(
                method="DELETE",
                path=self._document_path(collection, key),
                retry_on_conflict=retry_on_conflict,
            )
        )

    async def insert_documents(
        self,
        collection: str,
        documents: Iterable[dict[str, Any]],
        overwrite: bool = False,
    ) -> dict[str, Any]:
        """Bulk insert documents using NDJSON import.

        The payload is buffered so the request can be re-sent on retry.

        Returns:
            Dict with import statistics (created, errors, etc.)
        """
        payload = self._ndjson_buffer(documents)
        if payload is None:
            return {"created": 0}
        return await self.request(
            RequestOptions(
                method="POST",
                path="/_api/import",
                body=payload,
                headers={"content-type": "application/x-ndjson"},
                params={
                    "collection": collection,
                    "type": "documents",
                    "complete": True,
                    "overwrite": overwrite,
                },
            )
        )

    @staticmethod
    def _ndjson_buffer(documents: Iterable[dict[str, Any]]) -> bytes | None:
        """Build an NDJSON payload, or None if no documents were given."""
        lines = [orjson.dumps(doc) for doc in documents]
        if not lines:
            return None
        return b"\n".join(lines)


__all__ = ["Database"]
