"""
Connection tracking and fan-out for the daemon WebSocket.

Each accepted socket becomes a ``ClientSession`` holding its per-connection
state (role, in-flight request ids, cancelled generations). The
``ConnectionManager`` owns the active set and broadcasts status messages to
front-end clients.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket

from config import BRIDGE_CLIENT_ROLE, FRONTEND_CLIENT_ROLE
from errors import ProtocolError

logger = logging.getLogger(__name__)


class ClientSession:
    """One connected client.

    Sends go through ``send_json``, which silently drops messages once the
    socket is gone: the first failed send marks the session closed, and
    in-flight handlers finishing later become no-ops.
    """

    def __init__(self, ws: Optional[WebSocket], role: str = FRONTEND_CLIENT_ROLE):
        self.ws: Optional[WebSocket] = ws
        self.role = role
        self.session_id = uuid.uuid4().hex[:8]
        # Request id -> message type, for handlers that have not finished yet
        self.in_flight: Dict[str, str] = {}
        # Generate requests whose events must no longer be delivered
        self.cancelled: Set[str] = set()
        self.tasks: Set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()

    @property
    def is_bridge(self) -> bool:
        return self.role == BRIDGE_CLIENT_ROLE

    @property
    def is_open(self) -> bool:
        return self.ws is not None

    async def send_json(self, data: Dict[str, Any]) -> None:
        async with self._send_lock:
            _ws = self.ws
            if _ws is None:
                return
            try:
                await _ws.send_json(data)
            except Exception:
                self.ws = None          # mark disconnected on first failure

    # ------------------------------------------------------------------
    # Request bookkeeping
    # ------------------------------------------------------------------

    def begin(self, request_id: str, message_type: str = "") -> None:
        if request_id in self.in_flight:
            raise ProtocolError(f"Request {request_id} is already in progress")
        self.in_flight[request_id] = message_type

    def end(self, request_id: str) -> None:
        self.in_flight.pop(request_id, None)
        self.cancelled.discard(request_id)

    def cancel(self, request_id: str) -> bool:
        """Stop delivering events for an in-flight request. Returns False if it is not running."""
        if request_id not in self.in_flight or request_id in self.cancelled:
            return False
        self.cancelled.add(request_id)
        return True

    def is_cancelled(self, request_id: str) -> bool:
        return request_id in self.cancelled

    def track(self, task: asyncio.Task) -> None:
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def close(self) -> None:
        self.ws = None


class ConnectionManager:
    """Active client set plus best-effort broadcast."""

    def __init__(self):
        self._sessions: Dict[str, ClientSession] = {}

    @property
    def sessions(self) -> List[ClientSession]:
        return list(self._sessions.values())

    @property
    def frontends(self) -> List[ClientSession]:
        return [s for s in self._sessions.values() if not s.is_bridge]

    @property
    def bridge_connected(self) -> bool:
        return any(s.is_bridge for s in self._sessions.values())

    def accept(self, ws: WebSocket, role: str = FRONTEND_CLIENT_ROLE) -> ClientSession:
        session = ClientSession(ws, role)
        self._sessions[session.session_id] = session
        logger.info("Client connected (%s, role=%s, %d active)", session.session_id, role, len(self._sessions))
        if session.is_bridge:
            self.broadcast_soon({"type": "mcp-server-status", "connected": True})
        return session

    def remove(self, session: ClientSession) -> None:
        session.close()
        if self._sessions.pop(session.session_id, None) is None:
            return
        logger.info("Client disconnected (%s, %d active)", session.session_id, len(self._sessions))
        if session.is_bridge:
            self.broadcast_soon({"type": "mcp-server-status", "connected": self.bridge_connected})

    async def broadcast(self, message: Dict[str, Any], include_bridge: bool = False) -> int:
        """Send to every open front-end session (and bridges if asked). Returns how many were attempted."""
        targets = [
            s for s in self._sessions.values()
            if s.is_open and (include_bridge or not s.is_bridge)
        ]
        for session in targets:
            await session.send_json(message)
        return len(targets)

    def broadcast_soon(self, message: Dict[str, Any]) -> None:
        """Schedule a broadcast from synchronous code running on the event loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; dropping broadcast %s", message.get("type"))
            return
        loop.create_task(self.broadcast(message))

    def on_store_event(self, store: Any) -> Callable[[str, Any], None]:
        """Build an annotation-store listener that relays changes to front-ends."""
        def _listener(event: str, record: Any) -> None:
            if event == "updated":
                message: Dict[str, Any] = {
                    "type": "annotation-status-changed",
                    "annotationId": record.id,
                    "status": record.status,
                }
                if record.resolution_summary is not None:
                    message["summary"] = record.resolution_summary
                if record.dismissal_reason is not None:
                    message["reason"] = record.dismissal_reason
                self.broadcast_soon(message)
            self.broadcast_soon({"type": "mcp-annotation-counts", "counts": store.counts()})
        return _listener
