"""
MCP stdio server exposing the Skema annotation queue to an external coding agent.

Each tool is a thin call through ``DaemonBridge``; the daemon stays the only
owner of annotation state.

Run:  python mcp_server.py   (with the daemon already running)
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from mcp.server import Server, InitializationOptions
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import (
    Resource, ResourcesCapability, ServerCapabilities, TextContent, Tool, ToolsCapability,
)

from bridge import DaemonBridge
from config import PROVIDER_NAMES, app_config
from errors import BridgeError

logger = logging.getLogger(__name__)

SERVER_NAME = "skema"
STATUS_URI = "skema://status"
PROVIDERS_URI = "skema://providers"

_ANNOTATION_ID = {
    "type": "string",
    "description": "Id of the annotation (from skema_get_pending)",
}
_PATH = {
    "type": "string",
    "description": "Path relative to the project root",
}

server = Server(SERVER_NAME)
bridge: Optional[DaemonBridge] = None


def get_bridge() -> DaemonBridge:
    global bridge
    if bridge is None:
        bridge = DaemonBridge()
    return bridge


@server.list_tools()
async def list_tools():
    return [
        Tool(
            name="skema_get_pending",
            description="List annotations the user has drawn on the page that are waiting to be implemented",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="skema_get_annotation",
            description="Get one annotation with its comment, element details and status",
            inputSchema={
                "type": "object",
                "properties": {"annotationId": _ANNOTATION_ID},
                "required": ["annotationId"]
            }
        ),
        Tool(
            name="skema_acknowledge",
            description="Tell the user you have seen an annotation and are working on it",
            inputSchema={
                "type": "object",
                "properties": {"annotationId": _ANNOTATION_ID},
                "required": ["annotationId"]
            }
        ),
        Tool(
            name="skema_resolve",
            description="Mark an annotation as implemented, with a short summary of the change",
            inputSchema={
                "type": "object",
                "properties": {
                    "annotationId": _ANNOTATION_ID,
                    "summary": {
                        "type": "string",
                        "description": "What was changed"
                    }
                },
                "required": ["annotationId"]
            }
        ),
        Tool(
            name="skema_dismiss",
            description="Decline an annotation and tell the user why",
            inputSchema={
                "type": "object",
                "properties": {
                    "annotationId": _ANNOTATION_ID,
                    "reason": {
                        "type": "string",
                        "description": "Why the annotation will not be implemented"
                    }
                },
                "required": ["annotationId", "reason"]
            }
        ),
        Tool(
            name="skema_watch",
            description="Wait until new annotations are pending, or until the timeout passes",
            inputSchema={
                "type": "object",
                "properties": {
                    "timeoutSeconds": {
                        "type": "number",
                        "description": "How long to wait (default: 60)"
                    }
                }
            }
        ),
        Tool(
            name="skema_status",
            description="Get the daemon's current provider, mode, working directory and available providers",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="skema_set_provider",
            description="Set the coding-agent provider the daemon uses for direct runs",
            inputSchema={
                "type": "object",
                "properties": {
                    "provider": {
                        "type": "string",
                        "enum": list(PROVIDER_NAMES),
                        "description": "Provider name"
                    }
                },
                "required": ["provider"]
            }
        ),
        Tool(
            name="skema_read_file",
            description="Read a file from the project the daemon serves",
            inputSchema={
                "type": "object",
                "properties": {"path": _PATH},
                "required": ["path"]
            }
        ),
        Tool(
            name="skema_write_file",
            description="Write a file in the project the daemon serves",
            inputSchema={
                "type": "object",
                "properties": {
                    "path": _PATH,
                    "content": {"type": "string", "description": "Content to write"}
                },
                "required": ["path", "content"]
            }
        ),
        Tool(
            name="skema_list_files",
            description="List files in a project directory",
            inputSchema={
                "type": "object",
                "properties": {
                    "directory": {
                        "type": "string",
                        "description": "Directory relative to the project root (default: the root)"
                    }
                }
            }
        ),
    ]


@server.list_resources()
async def list_resources():
    return [
        Resource(
            uri=STATUS_URI,
            name="Skema Status",
            description="Current daemon provider, mode and working directory",
            mimeType="application/json",
        ),
        Resource(
            uri=PROVIDERS_URI,
            name="Available Providers",
            description="Providers installed on this machine and the one in use",
            mimeType="application/json",
        ),
    ]


@server.read_resource()
async def read_resource(uri) -> List[ReadResourceContents]:
    uri = str(uri).rstrip("/")
    if uri not in (STATUS_URI, PROVIDERS_URI):
        raise ValueError(f"Unknown resource: {uri}")
    status = await get_bridge().status()
    if uri == STATUS_URI:
        data = status
    else:
        data = {"available": status["availableProviders"], "current": status["provider"]}
    return [ReadResourceContents(content=_format(data), mime_type="application/json")]


def _format(data: Any) -> str:
    return json.dumps(data, indent=2)


async def run_tool(client: DaemonBridge, name: str, arguments: Dict[str, Any]) -> str:
    """Execute one tool against the daemon and render the result as text."""
    if name == "skema_get_pending":
        pending = await client.get_pending_annotations()
        if not pending:
            return "No pending annotations."
        return _format({"count": len(pending), "annotations": pending})
    if name == "skema_get_annotation":
        return _format(await client.get_annotation(arguments["annotationId"]))
    if name == "skema_acknowledge":
        return _format(await client.acknowledge(arguments["annotationId"]))
    if name == "skema_resolve":
        return _format(await client.resolve(arguments["annotationId"], arguments.get("summary")))
    if name == "skema_dismiss":
        return _format(await client.dismiss(arguments["annotationId"], arguments["reason"]))
    if name == "skema_watch":
        result = await client.watch(float(arguments.get("timeoutSeconds", 60)))
        if result["timeout"]:
            return "No new annotations before the timeout."
        return _format(result)
    if name == "skema_status":
        return _format(await client.status())
    if name == "skema_set_provider":
        return f"Provider set to {await client.set_provider(arguments['provider'])}"
    if name == "skema_read_file":
        return await client.read_file(arguments["path"])
    if name == "skema_write_file":
        await client.write_file(arguments["path"], arguments["content"])
        return f"Wrote {arguments['path']}"
    if name == "skema_list_files":
        files = await client.list_files(arguments.get("directory") or ".")
        return "\n".join(("[dir] " if f["isDirectory"] else "") + f["name"] for f in files)
    return f"Unknown tool: {name}"


class ToolError(Exception):
    """Failed tool call; the server reports it to the client with isError set."""


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> List[TextContent]:
    try:
        result = await run_tool(get_bridge(), name, arguments or {})
    except KeyError as e:
        raise ToolError(f"Error: missing argument {e}")
    except BridgeError as e:
        raise ToolError(f"Error: {e}")
    return [TextContent(type="text", text=result)]


def main():
    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, app_config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    async def run():
        client = get_bridge()
        try:
            await client.connect()
        except BridgeError as e:
            logger.warning("%s; tools will retry on first use", e)
        init_options = InitializationOptions(
            server_name=SERVER_NAME,
            server_version=app_config.version,
            capabilities=ServerCapabilities(tools=ToolsCapability(), resources=ResourcesCapability())
        )
        try:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, init_options)
        finally:
            await client.close()

    asyncio.run(run())


if __name__ == "__main__":
    main()
