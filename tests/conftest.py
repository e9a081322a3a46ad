"""Pytest configuration and fixtures for graphql_transport tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from graphql_transport.errors import GraphQLConnectionError
from graphql_transport.ws_client import (
    GraphQLWsClient,
    GraphQLWsMessage,
    GraphQLWsMessageType,
)


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    reason: str = "OK",
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call
        reason: HTTP reason phrase

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.reason = reason

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeWsClient(GraphQLWsClient):
    """In-memory stand-in for a WebSocket connection.

    Frames pushed with ``feed()`` are yielded by iteration; ``drop()`` ends the
    stream as if the server closed the socket.
    """

    def __init__(
        self,
        *,
        fail_connect: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__()
        self.fail_connect = fail_connect
        self.gate = gate
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.connect_calls: list[tuple[str, Any]] = []
        self._inbox: asyncio.Queue[GraphQLWsMessage] = asyncio.Queue()

    async def connect(self, url: str, *, subprotocols=None, timeout: float = 15.0) -> None:
        self.connect_calls.append((url, subprotocols))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_connect is not None:
            raise self.fail_connect

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(GraphQLWsMessage(GraphQLWsMessageType.CLOSED))

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.closed:
            raise GraphQLConnectionError("WebSocket is not connected")
        json.dumps(payload)
        self.sent.append(payload)

    def __aiter__(self):
        return self._iter_messages()

    async def _iter_messages(self):
        while True:
            message = await self._inbox.get()
            yield message
            if message.type is not GraphQLWsMessageType.TEXT:
                return

    def feed(self, frame: dict[str, Any]) -> None:
        self._inbox.put_nowait(
            GraphQLWsMessage(GraphQLWsMessageType.TEXT, json.dumps(frame))
        )

    def feed_raw(self, text: str) -> None:
        self._inbox.put_nowait(GraphQLWsMessage(GraphQLWsMessageType.TEXT, text))

    def drop(self) -> None:
        self._inbox.put_nowait(GraphQLWsMessage(GraphQLWsMessageType.CLOSED))

    def sent_types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]


async def settle() -> None:
    """Let pending listener callbacks run."""
    for _ in range(10):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll predicate on the event loop until it holds or timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)
