"""
Stream event data types produced while a coding agent runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional

EVENT_INIT = "init"
EVENT_TEXT = "text"
EVENT_TOOL_USE = "tool_use"
EVENT_TOOL_RESULT = "tool_result"
EVENT_ERROR = "error"
EVENT_DONE = "done"
EVENT_DEBUG = "debug"

EVENT_TYPES = (
    EVENT_INIT, EVENT_TEXT, EVENT_TOOL_USE, EVENT_TOOL_RESULT,
    EVENT_ERROR, EVENT_DONE, EVENT_DEBUG,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StreamEvent:
    """Event emitted during a coding-agent run"""
    type: str  # init, text, tool_use, tool_result, error, done, debug
    provider: str
    content: str = ""
    timestamp: str = field(default_factory=_now_iso)
    raw: Optional[Dict[str, Any]] = None  # decoded provider line, when it was JSON
    # Set on the single event that ends a run (done, or error on spawn/runtime fault)
    terminal: bool = False
    exit_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp,
            "provider": self.provider,
        }
        if self.raw is not None:
            data["raw"] = self.raw
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        return data
