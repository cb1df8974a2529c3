"""
Agent package - coding-agent CLI orchestration.

- events: StreamEvent, the normalized event every provider line becomes
- providers: per-CLI argument builders and stream-json decoders
- process: spawning a provider CLI and streaming its events
- prompts: prompt composition from annotation payloads
"""

from .events import StreamEvent
from .process import AgentRun, ProviderConfig, spawn_agent
from .providers import PROVIDERS, ProviderSpec, get_available_providers, is_provider_available
from .prompts import build_prompt

__all__ = [
    "StreamEvent",
    "AgentRun",
    "ProviderConfig",
    "spawn_agent",
    "PROVIDERS",
    "ProviderSpec",
    "get_available_providers",
    "is_provider_available",
    "build_prompt",
]
