"""
Client side of the daemon protocol, used by the external-agent bridge.

``DaemonBridge`` keeps one WebSocket to the daemon (identified as the
``mcp`` client), correlates replies to requests by id and reconnects after
the daemon goes away. Every request fails fast with ``BridgeError`` when
there is no connection and with ``BridgeTimeoutError`` when no reply
arrives in time.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config import BRIDGE_CLIENT_ROLE, DaemonConfig
from errors import BridgeError, BridgeTimeoutError

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class DaemonBridge:
    """Request/response client for the daemon WebSocket."""

    def __init__(
        self,
        url: Optional[str] = None,
        request_timeout: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
        poll_interval: Optional[float] = None,
        connector: Optional[Connector] = None,
    ):
        defaults = DaemonConfig()
        base = url or defaults.url
        sep = "&" if "?" in base else "?"
        self.url = f"{base}{sep}client={BRIDGE_CLIENT_ROLE}"
        self.request_timeout = request_timeout if request_timeout is not None else defaults.request_timeout
        self.reconnect_delay = reconnect_delay if reconnect_delay is not None else defaults.reconnect_delay
        self.poll_interval = poll_interval if poll_interval is not None else defaults.watch_poll_interval
        self._connector: Connector = connector or websockets.connect

        self._ws = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._ws is not None

    # ============================================================
    #  Connection
    # ============================================================

    async def connect(self) -> None:
        """Open the socket if it is not open yet. Raises BridgeError on failure."""
        async with self._connect_lock:
            if self._ws is not None:
                return
            try:
                ws = await self._connector(self.url)
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                raise BridgeError(f"Cannot reach Skema daemon at {self.url}: {e}")
            self._ws = ws
            self._closed = False
            self._reader_task = asyncio.create_task(self._read_loop(ws))
            logger.info("Connected to Skema daemon at %s", self.url)

    async def close(self) -> None:
        self._closed = True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        self._fail_pending(BridgeError("Bridge closed"))

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                self._on_message(raw)
        except ConnectionClosed as e:
            logger.warning("Daemon connection closed: %s", e)
        finally:
            if self._ws is ws:
                self._ws = None
            self._fail_pending(BridgeError("Connection to Skema daemon lost"))
            if not self._closed:
                self._schedule_reconnect()

    def _on_message(self, raw: Any) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Invalid JSON from daemon: %r", str(raw)[:100])
            return
        if not isinstance(data, dict):
            return
        request_id = data.get("id")
        future = self._pending.get(str(request_id)) if request_id is not None else None
        if future is None:
            # Greeting, broadcasts and replies nobody waits for any more
            logger.debug("Unsolicited daemon message: %s", data.get("type"))
            return
        if not future.done():
            future.set_result(data)

    def _fail_pending(self, error: BridgeError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    def _schedule_reconnect(self) -> None:
        """Start the reconnect loop unless one is already running."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closed and self._ws is None:
            await asyncio.sleep(self.reconnect_delay)
            try:
                await self.connect()
            except BridgeError as e:
                logger.info("Reconnect failed, retrying in %.1fs: %s", self.reconnect_delay, e)

    # ============================================================
    #  Requests
    # ============================================================

    async def request(self, message_type: str, **payload: Any) -> Dict[str, Any]:
        """Send one request and wait for its final reply."""
        if self._ws is None:
            try:
                await self.connect()
            except BridgeError:
                self._schedule_reconnect()
                raise
        ws = self._ws
        if ws is None:
            raise BridgeError("Not connected to Skema daemon")

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await ws.send(json.dumps({"id": request_id, "type": message_type, **payload}))
            reply = await asyncio.wait_for(future, self.request_timeout)
        except asyncio.TimeoutError:
            raise BridgeTimeoutError(f"{message_type} timed out after {self.request_timeout}s")
        except ConnectionClosed:
            raise BridgeError("Connection to Skema daemon lost")
        finally:
            self._pending.pop(request_id, None)

        if reply.get("type") == "error":
            raise BridgeError(reply.get("error") or "Unknown daemon error")
        return reply

    async def get_pending_annotations(self) -> List[Dict[str, Any]]:
        reply = await self.request("get-pending-annotations")
        return reply.get("annotations", [])

    async def get_all_annotations(self) -> Dict[str, Any]:
        reply = await self.request("get-all-annotations")
        return {"annotations": reply.get("annotations", []), "counts": reply.get("counts", {})}

    async def get_annotation(self, annotation_id: str) -> Dict[str, Any]:
        reply = await self.request("get-annotation", annotationId=annotation_id)
        return reply["annotation"]

    async def acknowledge(self, annotation_id: str) -> Dict[str, Any]:
        reply = await self.request("acknowledge-annotation", annotationId=annotation_id)
        return reply["annotation"]

    async def resolve(self, annotation_id: str, summary: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"annotationId": annotation_id}
        if summary:
            payload["summary"] = summary
        reply = await self.request("resolve-annotation", **payload)
        return reply["annotation"]

    async def dismiss(self, annotation_id: str, reason: str) -> Dict[str, Any]:
        reply = await self.request("dismiss-annotation", annotationId=annotation_id, reason=reason)
        return reply["annotation"]

    async def status(self) -> Dict[str, Any]:
        reply = await self.request("ping")
        return {k: reply.get(k) for k in ("provider", "mode", "cwd", "availableProviders", "mcpServerConnected")}

    async def set_provider(self, provider: str) -> str:
        reply = await self.request("set-provider", provider=provider)
        return reply["provider"]

    async def read_file(self, path: str) -> str:
        reply = await self.request("read-file", path=path)
        return reply["content"]

    async def write_file(self, path: str, content: str) -> None:
        await self.request("write-file", path=path, content=content)

    async def list_files(self, path: str = ".") -> List[Dict[str, Any]]:
        reply = await self.request("list-files", path=path)
        return reply.get("files", [])

    async def watch(self, timeout_seconds: float = 60.0) -> Dict[str, Any]:
        """Poll until at least one annotation is pending or timeout_seconds pass."""
        deadline = time.monotonic() + max(0.0, timeout_seconds)
        while True:
            pending = await self.get_pending_annotations()
            if pending:
                return {"timeout": False, "annotations": pending, "count": len(pending)}
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return {"timeout": True, "annotations": [], "count": 0}
            await asyncio.sleep(min(self.poll_interval, remaining))
