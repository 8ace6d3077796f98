"""Shared fixtures: databases wired to an in-process httpx.MockTransport."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from arangoclient.config import ClientConfig
from arangoclient.database.arango import Database


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], Any]) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> Any:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def hosts(self) -> list[str]:
        return [f"{request.url.host}:{request.url.port}" for request in self.requests]


@pytest.fixture
def recording_transport() -> type[RecordingTransport]:
    return RecordingTransport


@pytest.fixture
def make_database() -> Callable[..., tuple[Database, RecordingTransport]]:
    """Factory building a Database over a RecordingTransport.

    Keyword arguments are ClientConfig settings.
    """

    def factory(handler: Callable[[httpx.Request], Any], **settings: Any) -> tuple[Database, RecordingTransport]:
        transport = RecordingTransport(handler)
        config = ClientConfig.from_dict(settings)
        return Database(config, transport=transport), transport

    return factory
