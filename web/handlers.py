"""
Handlers for every daemon message type.

Each handler receives a ``HandlerContext`` and returns the final reply (or
None when it already answered). Domain errors are raised as ``DaemonError``
subclasses and turned into ``error`` replies by the router.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from annotation_store import RESOLVED_BY_AGENT, RESOLVED_BY_HUMAN, validate_annotation_payload
from config import AVAILABLE_MODES, MODE_QUEUED, is_valid_mode
from errors import DaemonError, ProtocolError
from agent.events import EVENT_DEBUG, EVENT_DONE, EVENT_ERROR, EVENT_TEXT, StreamEvent
from agent.process import ProviderConfig, spawn_agent
from agent.prompts import build_prompt
from web.router import HandlerContext, MessageType, check_exhaustive, handles

logger = logging.getLogger(__name__)


def _resolved_by(ctx: HandlerContext) -> str:
    return RESOLVED_BY_AGENT if ctx.session.is_bridge else RESOLVED_BY_HUMAN


def _annotation_id(ctx: HandlerContext) -> str:
    return ctx.message.require_str("annotationId")


# ============================================================
# Status / settings
# ============================================================

@handles(MessageType.PING)
async def handle_ping(ctx: HandlerContext):
    status = ctx.state.status()
    return ctx.reply(
        "pong",
        provider=status["provider"],
        mode=status["mode"],
        cwd=status["cwd"],
        availableProviders=status["availableProviders"],
        mcpServerConnected=status["mcpServerConnected"],
    )


@handles(MessageType.GET_PROVIDER)
async def handle_get_provider(ctx: HandlerContext):
    settings = ctx.state.settings
    return ctx.reply("provider", provider=settings.provider, available=settings.available_providers())


@handles(MessageType.SET_PROVIDER)
async def handle_set_provider(ctx: HandlerContext):
    provider = ctx.state.settings.set_provider(ctx.message.require_str("provider"))
    return ctx.reply("provider-changed", provider=provider)


@handles(MessageType.GET_MODE)
async def handle_get_mode(ctx: HandlerContext):
    return ctx.reply("mode", mode=ctx.state.settings.mode, availableModes=list(AVAILABLE_MODES))


@handles(MessageType.SET_MODE)
async def handle_set_mode(ctx: HandlerContext):
    mode = ctx.state.settings.set_mode(ctx.message.require_str("mode"))
    return ctx.reply("mode-changed", mode=mode)


# ============================================================
# Generate
# ============================================================

@handles(MessageType.GENERATE)
async def handle_generate(ctx: HandlerContext):
    msg = ctx.message
    annotation = validate_annotation_payload(msg.get("annotation"))
    comment = msg.get("comment") or annotation.get("comment") or ""

    # Mode and provider are fixed for this request at dispatch
    mode = msg.get("mode") or ctx.state.settings.mode
    if not is_valid_mode(mode):
        raise ProtocolError(f"Invalid mode: {mode}")
    provider = ctx.state.settings.provider

    if mode == MODE_QUEUED:
        return await _queue_annotation(ctx, annotation, comment)
    return await _run_direct(ctx, annotation, comment, provider)


async def _queue_annotation(ctx: HandlerContext, annotation: Dict[str, Any], comment: str):
    vision = ctx.message.get("visionDescription")
    if not vision and annotation.get("type") == "drawing" and ctx.state.describe_drawing:
        try:
            vision = await ctx.state.describe_drawing(annotation)
        except Exception as e:
            logger.warning("Vision analysis failed for queued drawing: %s", e)
            vision = None
        if ctx.session.is_cancelled(ctx.request_id):
            logger.info("Queued generate %s cancelled before enqueue", ctx.request_id)
            return None

    store = ctx.state.store
    record = store.enqueue(annotation, comment, vision)
    return ctx.reply(
        "annotation-queued",
        success=True,
        annotationId=record.id,
        pendingCount=store.pending_count(),
    )


async def _emit(ctx: HandlerContext, event: StreamEvent, annotation_id: str) -> None:
    if ctx.session.is_cancelled(ctx.request_id):
        return
    await ctx.send("ai-event", event=event.to_dict(), annotationId=annotation_id)


async def _describe_drawing(ctx: HandlerContext, annotation: Dict[str, Any],
                            annotation_id: str, provider: str) -> Optional[str]:
    await _emit(ctx, StreamEvent(type=EVENT_TEXT, provider=provider, content="[Analyzing drawing...]"), annotation_id)
    try:
        description = await ctx.state.describe_drawing(annotation)
    except Exception as e:
        logger.warning("Vision analysis failed for %s: %s", annotation_id, e)
        await _emit(ctx, StreamEvent(
            type=EVENT_ERROR, provider=provider, content=f"Vision analysis failed: {e}",
        ), annotation_id)
        return None
    await _emit(ctx, StreamEvent(
        type=EVENT_TEXT, provider=provider, content=f"[Vision analysis complete]\n{description}",
    ), annotation_id)
    return description


async def _run_direct(ctx: HandlerContext, annotation: Dict[str, Any], comment: str, provider: str):
    state = ctx.state
    msg = ctx.message
    annotation_id = str(annotation.get("id") or f"temp-{uuid.uuid4().hex}")

    snapshot = await asyncio.to_thread(state.snapshots.capture, annotation_id)
    if snapshot is not None:
        state.snapshots.track(snapshot)

    vision = msg.get("visionDescription")
    if not vision and annotation.get("type") == "drawing" and state.describe_drawing:
        vision = await _describe_drawing(ctx, annotation, annotation_id, provider)

    prompt = build_prompt(
        annotation,
        comment=comment,
        project_context=msg.get("projectContext"),
        fast_mode=msg.get("fastMode") is not False,
        vision_description=vision,
    )
    await _emit(ctx, StreamEvent(type=EVENT_DEBUG, provider=provider, content=prompt), annotation_id)

    run = spawn_agent(
        prompt,
        ProviderConfig(provider=provider, cwd=state.working_directory,
                       model=msg.get("model") or state.config.default_model),
        providers=state.providers,
    )
    last: Optional[StreamEvent] = None
    async for event in run.events():
        last = event
        await _emit(ctx, event, annotation_id)

    if ctx.session.is_cancelled(ctx.request_id):
        logger.info("Generate %s finished after cancel (exit %s)", annotation_id, run.returncode)
        return None

    success = last is not None and last.type == EVENT_DONE and last.exit_code == 0
    reply = ctx.reply(
        "generate-complete",
        success=success,
        annotationId=annotation_id,
        provider=provider,
        exitCode=last.exit_code if last else None,
    )
    if last is not None and last.type == EVENT_ERROR:
        reply["error"] = last.content
    return reply


@handles(MessageType.CANCEL)
async def handle_cancel(ctx: HandlerContext):
    target = str(ctx.message.get("requestId") or "")
    if not target:
        raise ProtocolError("Missing requestId")
    cancelled = (
        ctx.session.in_flight.get(target) == MessageType.GENERATE.value
        and ctx.session.cancel(target)
    )
    if cancelled:
        await ctx.session.send_json({
            "id": ctx.message.get("requestId"),
            "type": "generate-complete",
            "success": False,
            "cancelled": True,
        })
    return ctx.reply("cancelled", requestId=ctx.message.get("requestId"), cancelled=cancelled)


@handles(MessageType.REVERT)
async def handle_revert(ctx: HandlerContext):
    annotation_id = _annotation_id(ctx)
    snapshots = ctx.state.snapshots
    snapshot = snapshots.get(annotation_id)
    if snapshot is None:
        return ctx.reply("revert-result", success=False,
                         message=f"No snapshot found for {annotation_id}", files=[])
    result = await asyncio.to_thread(snapshots.restore, snapshot)
    if result.success:
        snapshots.forget(annotation_id, snapshot)
    return ctx.reply("revert-result", **result.to_dict())


# ============================================================
# Annotation queue
# ============================================================

@handles(MessageType.GET_PENDING_ANNOTATIONS)
async def handle_get_pending(ctx: HandlerContext):
    pending = [r.to_dict() for r in ctx.state.store.list_pending()]
    return ctx.reply("pending-annotations", annotations=pending, count=len(pending))


@handles(MessageType.GET_ALL_ANNOTATIONS)
async def handle_get_all(ctx: HandlerContext):
    store = ctx.state.store
    return ctx.reply(
        "all-annotations",
        annotations=[r.to_dict() for r in store.list_all()],
        counts=store.counts(),
    )


@handles(MessageType.GET_ANNOTATION)
async def handle_get_annotation(ctx: HandlerContext):
    record = ctx.state.store.get(_annotation_id(ctx))
    return ctx.reply("annotation", annotation=record.to_dict())


@handles(MessageType.ACKNOWLEDGE_ANNOTATION)
async def handle_acknowledge(ctx: HandlerContext):
    record = ctx.state.store.acknowledge(_annotation_id(ctx))
    return ctx.reply("annotation-acknowledged", annotation=record.to_dict())


@handles(MessageType.RESOLVE_ANNOTATION)
async def handle_resolve(ctx: HandlerContext):
    record = ctx.state.store.resolve(
        _annotation_id(ctx), ctx.message.get("summary"), resolved_by=_resolved_by(ctx),
    )
    return ctx.reply("annotation-resolved", annotation=record.to_dict())


@handles(MessageType.DISMISS_ANNOTATION)
async def handle_dismiss(ctx: HandlerContext):
    reason = ctx.message.require_str("reason")
    record = ctx.state.store.dismiss(_annotation_id(ctx), reason, resolved_by=_resolved_by(ctx))
    return ctx.reply("annotation-dismissed", annotation=record.to_dict())


@handles(MessageType.REMOVE_ANNOTATION)
async def handle_remove(ctx: HandlerContext):
    record = ctx.state.store.remove(_annotation_id(ctx))
    return ctx.reply("annotation-removed", annotationId=record.id)


@handles(MessageType.CLEAR_QUEUED_ANNOTATIONS)
async def handle_clear(ctx: HandlerContext):
    return ctx.reply("annotations-cleared", count=ctx.state.store.clear())


# ============================================================
# File and command operations
# ============================================================

@handles(MessageType.READ_FILE)
async def handle_read_file(ctx: HandlerContext):
    path = ctx.message.require_str("path")
    try:
        content = await asyncio.to_thread(ctx.state.backend.read_file, path)
    except (OSError, ValueError) as e:
        raise DaemonError(f"Failed to read file: {e}")
    return ctx.reply("file-content", path=path, content=content)


@handles(MessageType.WRITE_FILE)
async def handle_write_file(ctx: HandlerContext):
    path = ctx.message.require_str("path")
    content = ctx.message.get("content")
    if not isinstance(content, str):
        raise ProtocolError("Missing content")
    try:
        await asyncio.to_thread(ctx.state.backend.write_file, path, content)
    except (OSError, ValueError) as e:
        raise DaemonError(f"Failed to write file: {e}")
    return ctx.reply("write-success", path=path)


@handles(MessageType.LIST_FILES)
async def handle_list_files(ctx: HandlerContext):
    path = ctx.message.get("path") or "."
    try:
        files = await asyncio.to_thread(ctx.state.backend.list_dir, path)
    except (OSError, ValueError) as e:
        raise DaemonError(f"Failed to list files: {e}")
    return ctx.reply("file-list", path=path, files=files)


@handles(MessageType.RUN_COMMAND)
async def handle_run_command(ctx: HandlerContext):
    command = ctx.message.require_str("command")
    backend = ctx.state.backend
    try:
        stdout, stderr, exit_code = await asyncio.to_thread(
            backend.run_command, command, ".", ctx.state.config.command_timeout,
        )
    except (OSError, ValueError) as e:
        raise DaemonError(f"Failed to run command: {e}")
    return ctx.reply("command-result", stdout=stdout, stderr=stderr, exitCode=exit_code)


check_exhaustive()
