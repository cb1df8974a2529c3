"""
Tests for coding-agent process orchestration, driven by a fake agent:
the running Python interpreter executing an inline script.
"""

import asyncio
import sys

import pytest

from agent.events import EVENT_DONE, EVENT_ERROR, EVENT_INIT, EVENT_TEXT, EVENT_TOOL_USE
from agent.process import ProviderConfig, spawn_agent
from agent.prompts import build_prompt
from agent.providers import PROVIDERS, ProviderSpec

_TYPES = {"init": EVENT_INIT, "message": EVENT_TEXT, "tool_use": EVENT_TOOL_USE, "error": EVENT_ERROR}


def _fake(script: str, name: str = "gemini") -> dict:
    spec = ProviderSpec(
        name=name,
        command=sys.executable,
        build_args=lambda prompt, model: ["-c", script, prompt],
        event_types=_TYPES,
    )
    return {name: spec}


def _collect(script: str, prompt: str = "hello", cwd: str = "."):
    async def run():
        agent_run = spawn_agent(prompt, ProviderConfig("gemini", cwd=cwd), providers=_fake(script))
        return [event async for event in agent_run.events()]
    return asyncio.run(run())


def test_stream_json_lines_become_events():
    script = (
        "import json, sys\n"
        "print(json.dumps({'type': 'init', 'session_id': 's1'}))\n"
        "print(json.dumps({'type': 'message', 'content': 'working on ' + sys.argv[1]}))\n"
        "print('plain text line')\n"
    )
    events = _collect(script)
    assert [e.type for e in events] == [EVENT_INIT, EVENT_TEXT, EVENT_TEXT, EVENT_DONE]
    assert events[1].content == "working on hello"
    assert events[2].content == "plain text line"
    assert events[-1].exit_code == 0
    assert events[-1].terminal


def test_exactly_one_terminal_event_on_failure_exit():
    script = "import sys\nsys.stderr.write('bad things\\n')\nsys.exit(3)\n"
    events = _collect(script)
    terminal = [e for e in events if e.terminal]
    assert len(terminal) == 1
    assert events[-1].type == EVENT_DONE
    assert events[-1].exit_code == 3
    assert any(e.type == EVENT_ERROR and e.content == "bad things" for e in events[:-1])


def test_partial_final_line_is_flushed():
    script = "import sys\nsys.stdout.write('first\\nno newline at end')\n"
    events = _collect(script)
    assert [e.content for e in events if e.type == EVENT_TEXT] == ["first", "no newline at end"]


def test_multibyte_utf8_survives_chunking():
    script = "import sys\nsys.stdout.buffer.write('é'.encode('utf-8') * 5000 + b'\\n')\n"
    events = _collect(script)
    assert events[0].content == "é" * 5000


def test_spawn_failure_yields_single_error_event():
    spec = ProviderSpec(
        name="claude",
        command="/nonexistent/skema-agent-binary",
        build_args=lambda prompt, model: [prompt],
        event_types={},
    )

    async def run():
        agent_run = spawn_agent("hi", ProviderConfig("claude"), providers={"claude": spec})
        return [event async for event in agent_run.events()]

    events = asyncio.run(run())
    assert len(events) == 1
    assert events[0].type == EVENT_ERROR
    assert events[0].terminal
    assert events[0].content.startswith("Failed to spawn claude")


def test_event_stream_is_single_pass():
    async def run():
        agent_run = spawn_agent("x", ProviderConfig("gemini"), providers=_fake("print('once')"))
        first = [e async for e in agent_run.events()]
        with pytest.raises(RuntimeError):
            async for _ in agent_run.events():
                pass
        return first

    assert asyncio.run(run())[-1].type == EVENT_DONE


def test_unknown_provider_rejected():
    async def run():
        spawn_agent("x", ProviderConfig("nope"), providers=_fake("pass"))

    with pytest.raises(ValueError):
        asyncio.run(run())


def test_provider_arguments():
    gemini = PROVIDERS["gemini"].build_args("do it", None)
    assert gemini[:2] == ["-p", "do it"]
    assert "--yolo" in gemini
    assert "stream-json" in gemini
    claude = PROVIDERS["claude"].build_args("do it", "sonnet")
    assert "--verbose" in claude
    assert claude[claude.index("--model") + 1] == "sonnet"


def test_claude_result_line_is_not_terminal():
    event = PROVIDERS["claude"].decode_line('{"type": "result", "result": "All done"}')
    assert event.type == EVENT_TEXT
    assert not event.terminal


def test_fast_prompt_names_target():
    prompt = build_prompt({"type": "dom_selection", "text": "Sign up"}, "make it bigger")
    assert prompt.startswith("make it bigger")
    assert '"Sign up"' in prompt


def test_drawing_prompt_includes_vision_description():
    prompt = build_prompt(
        {"type": "drawing", "boundingBox": {"x": 0, "y": 0, "width": 200, "height": 100}},
        "add a card",
        vision_description="A rectangle with a title",
    )
    assert "add a card" in prompt
    assert "A rectangle with a title" in prompt
