"""
Message routing for the daemon WebSocket.

Inbound frames are parsed into ``IncomingMessage``, looked up by
``MessageType`` in the handler table and run to completion. Every failure is
turned into an ``error`` reply echoing the request id, so one bad request
never takes the connection down.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from errors import DaemonError, ProtocolError
from web.connections import ClientSession
from web.state import DaemonState

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    PING = "ping"
    GET_PROVIDER = "get-provider"
    SET_PROVIDER = "set-provider"
    GET_MODE = "get-mode"
    SET_MODE = "set-mode"
    GENERATE = "generate"
    CANCEL = "cancel"
    REVERT = "revert"
    GET_PENDING_ANNOTATIONS = "get-pending-annotations"
    GET_ALL_ANNOTATIONS = "get-all-annotations"
    GET_ANNOTATION = "get-annotation"
    ACKNOWLEDGE_ANNOTATION = "acknowledge-annotation"
    RESOLVE_ANNOTATION = "resolve-annotation"
    DISMISS_ANNOTATION = "dismiss-annotation"
    REMOVE_ANNOTATION = "remove-annotation"
    CLEAR_QUEUED_ANNOTATIONS = "clear-queued-annotations"
    READ_FILE = "read-file"
    WRITE_FILE = "write-file"
    LIST_FILES = "list-files"
    RUN_COMMAND = "run-command"


@dataclass
class IncomingMessage:
    """A parsed client request."""
    id: Any
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Correlation id as a hashable string."""
        return str(self.id)

    def get(self, name: str, default: Any = None) -> Any:
        return self.payload.get(name, default)

    def require_str(self, name: str) -> str:
        value = self.payload.get(name)
        if not isinstance(value, str) or not value:
            raise ProtocolError(f"Missing {name}")
        return value


def parse_message(raw: str) -> IncomingMessage:
    """Decode one frame. Raises ProtocolError for anything that is not a request object."""
    try:
        data = json.loads(raw)
    except ValueError:
        raise ProtocolError("Invalid JSON")
    if not isinstance(data, dict):
        raise ProtocolError("Invalid JSON")
    return IncomingMessage(id=data.get("id"), type=str(data.get("type") or ""), payload=data)


def error_reply(request_id: Any, error: str) -> Dict[str, Any]:
    reply: Dict[str, Any] = {"type": "error", "error": error}
    if request_id is not None:
        reply["id"] = request_id
    return reply


@dataclass
class HandlerContext:
    """What a handler gets: the daemon, the calling connection and the request."""
    state: DaemonState
    session: ClientSession
    message: IncomingMessage

    @property
    def request_id(self) -> str:
        return self.message.key

    def reply(self, type_: str, **fields: Any) -> Dict[str, Any]:
        return {"id": self.message.id, "type": type_, **fields}

    async def send(self, type_: str, **fields: Any) -> None:
        """Send an intermediate message sharing this request's id."""
        await self.session.send_json(self.reply(type_, **fields))


Handler = Callable[[HandlerContext], Awaitable[Optional[Dict[str, Any]]]]

HANDLERS: Dict[MessageType, Handler] = {}


def handles(message_type: MessageType) -> Callable[[Handler], Handler]:
    """Register a handler for one message type."""
    def _register(fn: Handler) -> Handler:
        if message_type in HANDLERS:
            raise RuntimeError(f"Duplicate handler for {message_type.value}")
        HANDLERS[message_type] = fn
        return fn
    return _register


def check_exhaustive() -> None:
    """Fail fast if any MessageType has no handler."""
    missing = [t.value for t in MessageType if t not in HANDLERS]
    if missing:
        raise RuntimeError(f"No handler registered for: {', '.join(missing)}")


async def dispatch(ctx: HandlerContext) -> Optional[Dict[str, Any]]:
    try:
        message_type = MessageType(ctx.message.type)
    except ValueError:
        raise ProtocolError(f"Unknown message type: {ctx.message.type or '(none)'}")
    return await HANDLERS[message_type](ctx)


async def handle_message(state: DaemonState, session: ClientSession, raw: str) -> None:
    """Parse, route and answer one inbound frame."""
    try:
        message = parse_message(raw)
        if message.id is None:
            raise ProtocolError("Missing message id")
    except ProtocolError as e:
        await session.send_json(error_reply(None, str(e)))
        return

    try:
        session.begin(message.key, message.type)
    except ProtocolError as e:
        await session.send_json(error_reply(message.id, str(e)))
        return

    try:
        ctx = HandlerContext(state, session, message)
        try:
            response = await dispatch(ctx)
        except DaemonError as e:
            response = error_reply(message.id, str(e))
        except Exception as e:
            logger.exception("Handler for %s failed", message.type)
            response = error_reply(message.id, f"Handler error: {e}")
        # A cancelled request has already been answered
        if response is not None and not session.is_cancelled(message.key):
            await session.send_json(response)
    finally:
        session.end(message.key)
