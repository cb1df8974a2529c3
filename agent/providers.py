"""
Coding-agent CLI providers.

Each provider is described by the executable to launch, how to turn a prompt
into command-line arguments, and how to decode one line of its
``stream-json`` output into a StreamEvent.
"""

import json
import logging
import shutil
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import PROVIDER_CLAUDE, PROVIDER_GEMINI, PROVIDER_NAMES, app_config
from .events import (
    StreamEvent,
    EVENT_INIT, EVENT_TEXT, EVENT_TOOL_USE, EVENT_TOOL_RESULT, EVENT_ERROR,
)

logger = logging.getLogger(__name__)

GEMINI_DEFAULT_MODEL = "gemini-2.5-flash"

# Provider line type -> stream event type. Provider "result"/"done" lines are
# plain text here; the only done event comes from process exit.
_GEMINI_TYPES = {
    "init": EVENT_INIT,
    "message": EVENT_TEXT,
    "tool_use": EVENT_TOOL_USE,
    "tool_result": EVENT_TOOL_RESULT,
    "error": EVENT_ERROR,
}

_CLAUDE_TYPES = {
    "system": EVENT_INIT,
    "assistant": EVENT_TEXT,
    "text": EVENT_TEXT,
    "tool_use": EVENT_TOOL_USE,
    "tool_result": EVENT_TOOL_RESULT,
    "user": EVENT_TOOL_RESULT,  # claude reports tool results as user turns
    "error": EVENT_ERROR,
}


@dataclass
class ProviderSpec:
    """How to launch and decode one coding-agent CLI."""
    name: str
    command: str
    build_args: Callable[[str, Optional[str]], List[str]]
    event_types: Dict[str, str]

    def decode_line(self, line: str) -> StreamEvent:
        """Decode a line of output. Non-JSON lines become text events."""
        try:
            parsed = json.loads(line)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            return StreamEvent(type=EVENT_TEXT, provider=self.name, content=line)
        return StreamEvent(
            type=self.event_types.get(str(parsed.get("type", "")), EVENT_TEXT),
            provider=self.name,
            content=extract_content(parsed),
            raw=parsed,
        )

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None


def _text_from_blocks(blocks: List[Any]) -> str:
    parts = []
    for block in blocks:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict):
            if isinstance(block.get("text"), str):
                parts.append(block["text"])
            elif isinstance(block.get("content"), str):
                parts.append(block["content"])
            elif block.get("type") == "tool_use" and block.get("name"):
                parts.append(f"[{block['name']}]")
    return "\n".join(p for p in parts if p)


def extract_content(parsed: Dict[str, Any]) -> str:
    """Pull human-readable content out of a decoded stream-json line."""
    for key in ("content", "message", "result", "output"):
        value = parsed.get(key)
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            return _text_from_blocks(value)
        if isinstance(value, dict):
            inner = value.get("content")
            if isinstance(inner, str):
                return inner
            if isinstance(inner, list):
                return _text_from_blocks(inner)
    if parsed.get("type") == "tool_use" and parsed.get("tool_name"):
        return f"[{parsed['tool_name']}]"
    return ""


def _gemini_args(prompt: str, model: Optional[str] = None) -> List[str]:
    return [
        "-p", prompt,
        "--yolo",
        "--output-format", "stream-json",
        "-m", model or GEMINI_DEFAULT_MODEL,
        *app_config.extra_agent_args,
    ]


def _claude_args(prompt: str, model: Optional[str] = None) -> List[str]:
    # --verbose is required for stream-json in print mode
    args = [
        "-p", prompt,
        "--output-format", "stream-json",
        "--verbose",
        "--dangerously-skip-permissions",
    ]
    if model:
        args.extend(["--model", model])
    return args + list(app_config.extra_agent_args)


PROVIDERS: Dict[str, ProviderSpec] = {
    PROVIDER_GEMINI: ProviderSpec(
        name=PROVIDER_GEMINI, command="gemini",
        build_args=_gemini_args, event_types=_GEMINI_TYPES,
    ),
    PROVIDER_CLAUDE: ProviderSpec(
        name=PROVIDER_CLAUDE, command="claude",
        build_args=_claude_args, event_types=_CLAUDE_TYPES,
    ),
}

INSTALL_HINTS = {
    PROVIDER_GEMINI: "npm install -g @google/gemini-cli",
    PROVIDER_CLAUDE: "npm install -g @anthropic-ai/claude-code",
}


def is_provider_available(name: str, providers: Optional[Dict[str, ProviderSpec]] = None) -> bool:
    spec = (providers or PROVIDERS).get(name)
    return spec is not None and spec.is_available()


def get_available_providers(providers: Optional[Dict[str, ProviderSpec]] = None) -> List[str]:
    providers = providers or PROVIDERS
    return [name for name in PROVIDER_NAMES if name in providers and providers[name].is_available()]
