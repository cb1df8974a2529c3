"""
Configuration module for the Skema daemon.
Handles environment variables, execution modes, provider names and daemon settings.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


# ============================================================
# Execution modes and providers (wire values)
# ============================================================

MODE_DIRECT = "direct-cli"   # daemon spawns the coding-agent CLI itself
MODE_QUEUED = "mcp"          # annotations wait in the store for an external agent

AVAILABLE_MODES: List[str] = [MODE_DIRECT, MODE_QUEUED]

PROVIDER_GEMINI = "gemini"
PROVIDER_CLAUDE = "claude"

PROVIDER_NAMES: List[str] = [PROVIDER_GEMINI, PROVIDER_CLAUDE]

# Connection role marker for the external agent bridge (ws://host:port/ws?client=mcp)
BRIDGE_CLIENT_ROLE = "mcp"
FRONTEND_CLIENT_ROLE = "frontend"


@dataclass
class DaemonConfig:
    """Daemon-level configuration, fixed at startup.

    Provider and mode given here are only defaults; the live values are
    owned by ``web.state.RuntimeSettings`` and change through set-provider /
    set-mode requests.
    """
    port: int = int(os.getenv("SKEMA_PORT", "9999"))
    host: str = os.getenv("SKEMA_HOST", "127.0.0.1")
    working_directory: str = os.getenv("SKEMA_CWD", ".")
    default_provider: str = os.getenv("SKEMA_PROVIDER", PROVIDER_GEMINI)
    default_mode: str = os.getenv("SKEMA_MODE", MODE_DIRECT)
    default_model: Optional[str] = os.getenv("SKEMA_MODEL") or None
    # Request/response correlation window (seconds)
    request_timeout: float = float(os.getenv("SKEMA_REQUEST_TIMEOUT", "30"))
    # run-command limit; never applied to coding-agent processes
    command_timeout: int = int(os.getenv("SKEMA_COMMAND_TIMEOUT", "120"))
    # Bridge reconnect and watch polling
    reconnect_delay: float = float(os.getenv("SKEMA_RECONNECT_DELAY", "2.0"))
    watch_poll_interval: float = float(os.getenv("SKEMA_WATCH_POLL_INTERVAL", "2.0"))

    def __post_init__(self):
        self.working_directory = os.path.abspath(os.path.expanduser(self.working_directory))

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/ws"


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Skema Daemon"
    version: str = "0.3.0"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug_mode: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"
    # Extra flags appended to every coding-agent invocation
    extra_agent_args: List[str] = field(
        default_factory=lambda: [a for a in os.getenv("SKEMA_AGENT_ARGS", "").split() if a]
    )


# Global configuration instances
app_config = AppConfig()


def is_valid_mode(mode: str) -> bool:
    return mode in AVAILABLE_MODES


def is_valid_provider(provider: str) -> bool:
    return provider in PROVIDER_NAMES
