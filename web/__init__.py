"""
Skema daemon: local WebSocket server.

Front-end overlays and the external-agent bridge connect to ``/ws``; the
bridge identifies itself with ``?client=mcp``.

Run:  python -m web [--port 9999] [--dir /path/to/project]
"""

import asyncio
import logging
from typing import Dict, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import APIRouter, FastAPI, WebSocket, WebSocketDisconnect

from backend import LocalBackend
from config import BRIDGE_CLIENT_ROLE, FRONTEND_CLIENT_ROLE, DaemonConfig, app_config
from agent.providers import ProviderSpec
from web.router import handle_message
from web.state import DaemonState, DrawingDescriber
import web.handlers  # noqa: F401  registers the handler table

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    state: DaemonState = ws.app.state.daemon
    role = BRIDGE_CLIENT_ROLE if ws.query_params.get("client") == BRIDGE_CLIENT_ROLE else FRONTEND_CLIENT_ROLE
    session = state.connections.accept(ws, role)
    await session.send_json({"type": "connected", **state.status()})

    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            # Requests run concurrently; a long generate never blocks a ping
            session.track(asyncio.create_task(handle_message(state, session, raw)))
    except WebSocketDisconnect:
        pass
    finally:
        state.connections.remove(session)


# ============================================================
# Application factory
# ============================================================

def create_app(
    config: Optional[DaemonConfig] = None,
    providers: Optional[Dict[str, ProviderSpec]] = None,
    backend: Optional[LocalBackend] = None,
    describe_drawing: Optional[DrawingDescriber] = None,
) -> FastAPI:
    """Build a daemon app with its own state. Several can coexist in one process."""
    config = config or DaemonConfig()
    app = FastAPI(title=app_config.title, version=app_config.version)
    app.state.daemon = DaemonState(
        config, providers=providers, backend=backend, describe_drawing=describe_drawing,
    )

    @app.on_event("shutdown")
    async def _on_shutdown():
        app.state.daemon.close()
        logger.info("Daemon stopped")

    app.include_router(router)
    logger.info("Daemon ready for %s (mode=%s, provider=%s)",
                config.working_directory, app.state.daemon.settings.mode,
                app.state.daemon.settings.provider)
    return app
