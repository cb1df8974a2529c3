"""
Tests for the MCP tool layer, against a stand-in bridge.
"""

import asyncio
import json

import pytest

from errors import BridgeError
import mcp_server
from mcp_server import ToolError, call_tool, read_resource, run_tool


class _StubBridge:
    def __init__(self, pending=None):
        self.pending = pending or []
        self.calls = []

    async def get_pending_annotations(self):
        return self.pending

    async def get_annotation(self, annotation_id):
        self.calls.append(("get", annotation_id))
        return {"id": annotation_id, "status": "pending"}

    async def acknowledge(self, annotation_id):
        self.calls.append(("ack", annotation_id))
        return {"id": annotation_id, "status": "acknowledged"}

    async def resolve(self, annotation_id, summary=None):
        self.calls.append(("resolve", annotation_id, summary))
        return {"id": annotation_id, "status": "resolved"}

    async def dismiss(self, annotation_id, reason):
        self.calls.append(("dismiss", annotation_id, reason))
        raise BridgeError("Annotation not found: " + annotation_id)

    async def watch(self, timeout_seconds=60.0):
        return {"timeout": True, "annotations": [], "count": 0}

    async def status(self):
        return {"provider": "gemini", "mode": "mcp", "cwd": "/work",
                "availableProviders": ["gemini"], "mcpServerConnected": True}

    async def set_provider(self, provider):
        if provider != "gemini":
            raise BridgeError(f'Provider "{provider}" is not installed')
        return provider

    async def list_files(self, path="."):
        self.calls.append(("list", path))
        return [{"name": "src", "isDirectory": True}, {"name": "index.html", "isDirectory": False}]


def test_get_pending_formats_annotations():
    stub = _StubBridge([{"id": "a1", "comment": "fix"}])
    text = asyncio.run(run_tool(stub, "skema_get_pending", {}))
    assert json.loads(text) == {"count": 1, "annotations": [{"id": "a1", "comment": "fix"}]}


def test_empty_queue_and_watch_timeout_are_plain_text():
    stub = _StubBridge()
    assert asyncio.run(run_tool(stub, "skema_get_pending", {})) == "No pending annotations."
    assert asyncio.run(run_tool(stub, "skema_watch", {"timeoutSeconds": 1})) == \
        "No new annotations before the timeout."


def test_resolve_passes_summary():
    stub = _StubBridge()
    text = asyncio.run(run_tool(stub, "skema_resolve", {"annotationId": "a1", "summary": "done"}))
    assert json.loads(text)["status"] == "resolved"
    assert stub.calls == [("resolve", "a1", "done")]


def test_status_and_set_provider():
    stub = _StubBridge()
    status = json.loads(asyncio.run(run_tool(stub, "skema_status", {})))
    assert status["provider"] == "gemini"
    assert status["cwd"] == "/work"
    assert asyncio.run(run_tool(stub, "skema_set_provider", {"provider": "gemini"})) == "Provider set to gemini"


def test_list_files_marks_directories():
    stub = _StubBridge()
    text = asyncio.run(run_tool(stub, "skema_list_files", {}))
    assert text.splitlines() == ["[dir] src", "index.html"]
    assert stub.calls == [("list", ".")]


def test_unknown_tool():
    assert asyncio.run(run_tool(_StubBridge(), "skema_nope", {})) == "Unknown tool: skema_nope"


def test_call_tool_failures_raise_tool_error(monkeypatch):
    monkeypatch.setattr(mcp_server, "bridge", _StubBridge())
    with pytest.raises(ToolError) as excinfo:
        asyncio.run(call_tool("skema_dismiss", {"annotationId": "x", "reason": "no"}))
    assert str(excinfo.value) == "Error: Annotation not found: x"

    with pytest.raises(ToolError) as excinfo:
        asyncio.run(call_tool("skema_acknowledge", {}))
    assert str(excinfo.value).startswith("Error: missing argument")

    with pytest.raises(ToolError):
        asyncio.run(call_tool("skema_set_provider", {"provider": "claude"}))

    result = asyncio.run(call_tool("skema_status", {}))
    assert json.loads(result[0].text)["mode"] == "mcp"


def test_resources(monkeypatch):
    monkeypatch.setattr(mcp_server, "bridge", _StubBridge())
    contents = asyncio.run(read_resource("skema://providers"))
    assert json.loads(contents[0].content) == {"available": ["gemini"], "current": "gemini"}
    assert contents[0].mime_type == "application/json"

    contents = asyncio.run(read_resource("skema://status"))
    assert json.loads(contents[0].content)["mcpServerConnected"] is True

    with pytest.raises(ValueError):
        asyncio.run(read_resource("skema://nope"))
