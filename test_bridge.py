"""
Tests for the external-agent bridge client.

A loopback socket joins a DaemonBridge to an in-process DaemonState, so
requests run through the real router and handlers.
"""

import asyncio
import json

import pytest

from bridge import DaemonBridge
from config import BRIDGE_CLIENT_ROLE, DaemonConfig
from errors import BridgeError, BridgeTimeoutError
from web.router import handle_message
from web.state import DaemonState


class _Loopback:
    """Bridge-side socket whose far end is a daemon session."""

    def __init__(self, state=None):
        self.state = state
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.session = state.connections.accept(self, BRIDGE_CLIENT_ROLE) if state else None

    # daemon -> bridge
    async def send_json(self, data):
        await self.incoming.put(json.dumps(data))

    # bridge -> daemon
    async def send(self, raw):
        self.sent.append(json.loads(raw))
        if self.state is not None:
            self.session.track(asyncio.create_task(handle_message(self.state, self.session, raw)))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def drop(self):
        self.incoming.put_nowait(None)

    async def close(self):
        self.closed = True
        if self.state is not None:
            self.state.connections.remove(self.session)
        self.drop()


def _run(coro):
    return asyncio.run(coro)


def _state(tmp_path):
    return DaemonState(DaemonConfig(working_directory=str(tmp_path)))


def _bridge(sockets, **kwargs):
    urls = []

    async def connector(url):
        urls.append(url)
        if not sockets:
            raise OSError("connection refused")
        return sockets.pop(0)

    kwargs.setdefault("request_timeout", 2.0)
    kwargs.setdefault("reconnect_delay", 0.01)
    kwargs.setdefault("poll_interval", 0.02)
    return DaemonBridge("ws://127.0.0.1:9999/ws", connector=connector, **kwargs), urls


def test_annotation_workflow_through_daemon(tmp_path):
    async def scenario():
        state = _state(tmp_path)
        state.store.enqueue({"id": "ann-1", "type": "dom_selection", "selector": "h1"}, "bigger title")
        bridge, urls = _bridge([_Loopback(state)])
        await bridge.connect()
        assert urls == ["ws://127.0.0.1:9999/ws?client=mcp"]

        pending = await bridge.get_pending_annotations()
        assert [a["id"] for a in pending] == ["ann-1"]

        acknowledged = await bridge.acknowledge("ann-1")
        assert acknowledged["status"] == "acknowledged"

        resolved = await bridge.resolve("ann-1", "Made the title 2rem")
        assert resolved["status"] == "resolved"
        assert resolved["resolvedBy"] == "agent"
        assert resolved["resolutionSummary"] == "Made the title 2rem"

        fetched = await bridge.get_annotation("ann-1")
        assert fetched["comment"] == "bigger title"

        with pytest.raises(BridgeError) as excinfo:
            await bridge.dismiss("ann-1", "changed my mind")
        assert "cannot move from resolved" in str(excinfo.value)

        summary = await bridge.get_all_annotations()
        assert summary["counts"]["resolved"] == 1
        await bridge.close()

    _run(scenario())


def test_status_and_files_through_daemon(tmp_path):
    async def scenario():
        bridge, _ = _bridge([_Loopback(_state(tmp_path))])
        status = await bridge.status()
        assert status["cwd"] == str(tmp_path)
        assert status["mcpServerConnected"] is True

        await bridge.write_file("docs/note.md", "hello\n")
        assert await bridge.read_file("docs/note.md") == "hello\n"
        assert await bridge.list_files(".") == [{"name": "docs", "isDirectory": True}]

        with pytest.raises(BridgeError) as excinfo:
            await bridge.set_provider("openai")
        assert "Invalid provider" in str(excinfo.value)
        await bridge.close()

    _run(scenario())


def test_unknown_annotation_is_an_error(tmp_path):
    async def scenario():
        bridge, _ = _bridge([_Loopback(_state(tmp_path))])
        with pytest.raises(BridgeError) as excinfo:
            await bridge.get_annotation("missing")
        assert str(excinfo.value) == "Annotation not found: missing"
        await bridge.close()

    _run(scenario())


def test_watch_returns_when_annotation_arrives(tmp_path):
    async def scenario():
        state = _state(tmp_path)
        bridge, _ = _bridge([_Loopback(state)])
        await bridge.connect()
        watcher = asyncio.create_task(bridge.watch(timeout_seconds=5))
        await asyncio.sleep(0.1)
        state.store.enqueue({"id": "late", "type": "gesture", "gesture": "circle"})
        result = await asyncio.wait_for(watcher, 3)
        await bridge.close()
        return result

    result = _run(scenario())
    assert result["timeout"] is False
    assert result["count"] == 1
    assert result["annotations"][0]["id"] == "late"


def test_watch_times_out(tmp_path):
    async def scenario():
        bridge, _ = _bridge([_Loopback(_state(tmp_path))])
        result = await bridge.watch(timeout_seconds=0.1)
        await bridge.close()
        return result

    assert _run(scenario()) == {"timeout": True, "annotations": [], "count": 0}


def test_request_times_out_without_reply():
    async def scenario():
        silent = _Loopback()
        bridge, _ = _bridge([silent], request_timeout=0.1)
        with pytest.raises(BridgeTimeoutError):
            await bridge.get_pending_annotations()
        assert silent.sent[0]["type"] == "get-pending-annotations"
        await bridge.close()

    _run(scenario())


def test_unreachable_daemon_raises():
    async def scenario():
        bridge, urls = _bridge([])
        with pytest.raises(BridgeError):
            await bridge.get_pending_annotations()
        await bridge.close()
        assert urls

    _run(scenario())


def test_disconnect_fails_pending_and_reconnects():
    async def scenario():
        first, second = _Loopback(), _Loopback()
        bridge, urls = _bridge([first, second], request_timeout=5)
        await bridge.connect()

        request = asyncio.create_task(bridge.get_pending_annotations())
        await asyncio.sleep(0.05)
        first.drop()
        with pytest.raises(BridgeError) as excinfo:
            await request
        assert "lost" in str(excinfo.value)

        for _ in range(50):
            if bridge.connected:
                break
            await asyncio.sleep(0.02)
        assert bridge.connected
        assert len(urls) == 2
        await bridge.close()

    _run(scenario())
