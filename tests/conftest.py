"""
Shared fixtures: an in-memory transport and a scripted Triggerware server.
"""

import asyncio
import json
from typing import Any, Callable

import pytest

from triggerware import TriggerwareClient
from triggerware.jsonrpc import JsonRpcException


class FakeTransport:
    """Transport whose peer is the test: it records what is sent and replays what is pushed."""

    def __init__(self):
        self.inbound: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False
        self.on_send: Callable[[dict], None] | None = None

    async def receive_message(self) -> str:
        msg = await self.inbound.get()
        if msg is None:
            raise EOFError("closed")
        return msg

    async def send_message(self, body: str):
        obj = json.loads(body)
        self.sent.append(obj)
        if self.on_send is not None:
            self.on_send(obj)

    async def close(self):
        self.closed = True
        self.inbound.put_nowait(None)

    def push(self, obj: Any):
        self.inbound.put_nowait(json.dumps(obj))

    def push_raw(self, text: str):
        self.inbound.put_nowait(text)

    def end(self):
        self.inbound.put_nowait(None)

    def responses(self) -> list[dict]:
        return [m for m in self.sent if "method" not in m]


class FakeServer:
    """Answers the client's requests with per-method handlers.

    Requests for methods without a handler are recorded and left unanswered.
    """

    def __init__(self):
        self.transport = FakeTransport()
        self.transport.on_send = self._on_send
        self.handlers: dict[str, Callable[[Any], Any]] = {"noop": lambda params: None}
        self.calls: list[tuple[str, Any]] = []
        self.notifications: list[tuple[str, Any]] = []

    def _on_send(self, msg: dict):
        if "method" not in msg:
            return
        if "id" not in msg:
            self.notifications.append((msg["method"], msg.get("params")))
            return

        self.calls.append((msg["method"], msg.get("params")))
        handler = self.handlers.get(msg["method"])
        if handler is None:
            return
        try:
            result = handler(msg.get("params"))
        except JsonRpcException as e:
            self.transport.push({"jsonrpc": "2.0", "id": msg["id"], "error": e.to_err()})
        else:
            self.transport.push({"jsonrpc": "2.0", "id": msg["id"], "result": result})

    def params_of(self, method: str) -> list[Any]:
        return [params for name, params in self.calls if name == method]

    def invoke(self, method: str, params: Any = None, id: int | None = None):
        """Sends the client a call (with id) or a notification (without)."""
        msg: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            msg["params"] = params
        if id is not None:
            msg["id"] = id
        self.transport.push(msg)


async def flush(connection):
    """Waits until everything pushed so far has been dispatched."""
    await connection.call("noop")
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
async def client(server):
    client = TriggerwareClient(default_fetch_size=2)
    client.start(server.transport)
    yield client
    await client.close()
