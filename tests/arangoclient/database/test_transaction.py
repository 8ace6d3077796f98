"""Unit tests for arangoclient.database.arango.transaction module."""

import asyncio
import re

import httpx
import orjson
import pytest

from arangoclient.database.arango.errors import ArangoError, TransactionStateError
from arangoclient.database.arango.transaction import (
    Transaction,
    TransactionStatus,
    coerce_collections,
)

_TRX_PATH = re.compile(r"^/_db/_system/_api/transaction/([^/]+)$")
_DOC_PATH = re.compile(r"^/_db/_system/_api/document/([^/]+)(?:/([^/]+))?$")


def _error(status: int, error_num: int, message: str) -> httpx.Response:
    return httpx.Response(
        status,
        json={"error": True, "code": status, "errorNum": error_num, "errorMessage": message},
    )


class FakeArango:
    """In-memory stand-in for the document and stream transaction APIs."""

    def __init__(self) -> None:
        self.documents: dict[str, dict] = {}
        self.transactions: dict[str, str] = {}
        self.staged: dict[str, dict[str, dict]] = {}
        self.trx_hosts: list[tuple[str | None, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        trx_id = request.headers.get("x-arango-trx-id")
        if trx_id:
            self.trx_hosts.append((trx_id, request.url.host))

        if path == "/_db/_system/_api/transaction/begin":
            trx_id = f"trx{len(self.transactions) + 1}"
            self.transactions[trx_id] = "running"
            self.staged[trx_id] = {}
            return httpx.Response(201, json={"code": 201, "error": False, "result": {"id": trx_id, "status": "running"}})

        if path == "/_db/_system/_api/transaction":
            return httpx.Response(
                200,
                json={"transactions": [{"id": t, "state": s} for t, s in self.transactions.items() if s == "running"]},
            )

        if match := _TRX_PATH.match(path):
            return self._transaction(request.method, match.group(1))

        if match := _DOC_PATH.match(path):
            return self._document(request, match.group(1), match.group(2), trx_id)

        return _error(404, 404, "unknown path")

    def _transaction(self, method: str, trx_id: str) -> httpx.Response:
        if trx_id not in self.transactions:
            return _error(404, 10, "transaction not found")
        if method == "PUT":
            self.transactions[trx_id] = "committed"
            self.documents.update(self.staged.pop(trx_id))
        elif method == "DELETE":
            self.transactions[trx_id] = "aborted"
            self.staged.pop(trx_id)
        return httpx.Response(200, json={"result": {"id": trx_id, "status": self.transactions[trx_id]}})

    def _document(self, request: httpx.Request, collection: str, key: str | None, trx_id: str | None):
        if request.method == "POST":
            document = orjson.loads(request.content)
            target = self.staged[trx_id] if trx_id else self.documents
            target[f"{collection}/{document['_key']}"] = document
            return httpx.Response(202, json={"_key": document["_key"], "_id": f"{collection}/{document['_key']}"})
        document = self.documents.get(f"{collection}/{key}")
        if document is None:
            return _error(404, 1202, "document not found")
        return httpx.Response(200, json=document)


@pytest.fixture
def server() -> FakeArango:
    return FakeArango()


class TestCoerceCollections:
    """Tests for coerce_collections."""

    def test_single_name_is_write(self) -> None:
        assert coerce_collections("users") == {"write": ["users"]}

    def test_list_is_write(self) -> None:
        assert coerce_collections(["users", "groups"]) == {"write": ["users", "groups"]}

    def test_mapping(self) -> None:
        result = coerce_collections({"read": "logs", "exclusive": ["users"], "allowImplicit": False})
        assert result == {"read": ["logs"], "exclusive": ["users"], "allowImplicit": False}


class TestTransactionLifecycle:
    """Tests for begin, step, commit and abort."""

    @pytest.mark.asyncio
    async def test_commit_makes_document_visible(self, make_database, server) -> None:
        db, _ = make_database(server)

        trx = await db.begin_transaction("users")
        await trx.step(lambda: db.insert_document("users", {"_key": "alice"}))

        with pytest.raises(ArangoError):
            await db.get_document("users", "alice")

        result = await trx.commit()

        assert result == {"id": trx.id, "status": "committed"}
        assert trx.status is TransactionStatus.COMMITTED
        assert (await db.get_document("users", "alice"))["_key"] == "alice"

    @pytest.mark.asyncio
    async def test_abort_discards_document(self, make_database, server) -> None:
        db, _ = make_database(server)

        trx = await db.begin_transaction("users")
        await trx.step(lambda: db.insert_document("users", {"_key": "bob"}))
        await trx.abort()

        assert trx.status is TransactionStatus.ABORTED
        with pytest.raises(ArangoError) as exc_info:
            await db.get_document("users", "bob")
        assert exc_info.value.error_num == 1202

    @pytest.mark.asyncio
    async def test_double_commit_raises(self, make_database, server) -> None:
        db, transport = make_database(server)
        trx = await db.begin_transaction("users")
        await trx.commit()
        sent = len(transport.requests)

        with pytest.raises(TransactionStateError, match="already committed"):
            await trx.commit()
        with pytest.raises(TransactionStateError):
            await trx.abort()
        assert len(transport.requests) == sent

    @pytest.mark.asyncio
    async def test_step_after_commit_raises(self, make_database, server) -> None:
        db, _ = make_database(server)
        trx = await db.begin_transaction("users")
        await trx.commit()

        with pytest.raises(TransactionStateError):
            await trx.step(lambda: db.insert_document("users", {"_key": "late"}))

    @pytest.mark.asyncio
    async def test_step_requires_awaitable(self, make_database, server) -> None:
        db, _ = make_database(server)
        trx = await db.begin_transaction("users")

        with pytest.raises(TypeError, match="awaitable"):
            await trx.step(lambda: 42)

    @pytest.mark.asyncio
    async def test_steps_are_pinned_to_transaction_host(self, make_database, server) -> None:
        """Every request inside a step, including from child tasks, uses the begin host."""
        db, transport = make_database(
            server,
            url=["http://a:8529", "http://b:8529", "http://c:8529"],
            load_balancing_strategy="ROUND_ROBIN",
        )
        trx = await db.begin_transaction("users")

        async def work():
            await asyncio.gather(
                db.insert_document("users", {"_key": "k1"}),
                db.insert_document("users", {"_key": "k2"}),
                db.insert_document("users", {"_key": "k3"}),
            )

        await trx.step(work)
        await trx.commit()

        assert trx.host_url == "http://a:8529"
        assert server.trx_hosts == [(trx.id, "a")] * 3
        assert transport.hosts()[-1] == "a:8529"

    @pytest.mark.asyncio
    async def test_requests_outside_step_are_untagged(self, make_database, server) -> None:
        db, transport = make_database(server)
        trx = await db.begin_transaction("users")
        await trx.step(lambda: db.insert_document("users", {"_key": "in"}))

        await db.insert_document("users", {"_key": "out"})

        assert "x-arango-trx-id" not in transport.requests[-1].headers
        await trx.commit()


class TestTransactionLookup:
    """Tests for get, exists and listing."""

    @pytest.mark.asyncio
    async def test_second_handle_polls_status(self, make_database, server) -> None:
        db, _ = make_database(server)
        trx = await db.begin_transaction("users")

        other = db.transaction(trx.id)
        assert other.status is None
        assert (await other.get())["status"] == "running"
        assert other.status is TransactionStatus.RUNNING

        await trx.commit()
        await other.get()
        assert other.status is TransactionStatus.COMMITTED

    @pytest.mark.asyncio
    async def test_exists(self, make_database, server) -> None:
        db, _ = make_database(server)
        trx = await db.begin_transaction("users")

        assert await trx.exists() is True
        assert await db.transaction("nope").exists() is False

    @pytest.mark.asyncio
    async def test_list_transactions(self, make_database, server) -> None:
        db, _ = make_database(server)
        first = await db.begin_transaction("users")
        second = await db.begin_transaction(["users"])
        await second.abort()

        assert await db.list_transactions() == [{"id": first.id, "state": "running"}]
        handles = await db.transactions()
        assert [handle.id for handle in handles] == [first.id]
        assert all(isinstance(handle, Transaction) for handle in handles)


class TestWithTransaction:
    """Tests for Database.with_transaction."""

    @pytest.mark.asyncio
    async def test_commits_on_success(self, make_database, server) -> None:
        db, _ = make_database(server)

        async def insert(trx):
            await db.insert_document("users", {"_key": "carol"})
            return trx.id

        trx_id = await db.with_transaction("users", insert)

        assert server.transactions[trx_id] == "committed"
        assert "users/carol" in server.documents

    @pytest.mark.asyncio
    async def test_aborts_and_reraises_on_failure(self, make_database, server) -> None:
        db, _ = make_database(server)

        async def fail(trx):
            await db.insert_document("users", {"_key": "dave"})
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await db.with_transaction("users", fail)

        assert list(server.transactions.values()) == ["aborted"]
        assert "users/dave" not in server.documents
