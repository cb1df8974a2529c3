"""
Shared state for one daemon instance.

Everything the message handlers read or mutate lives on a ``DaemonState``
object created by ``web.create_app`` and reached through
``websocket.app.state.daemon``; nothing is module-global, so several daemons
can run side by side (e.g. under test).
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from annotation_store import AnnotationStore
from backend import LocalBackend
from config import (
    AVAILABLE_MODES, MODE_DIRECT, PROVIDER_NAMES,
    DaemonConfig, is_valid_mode, is_valid_provider,
)
from errors import UnavailableError
from snapshots import SnapshotManager
from web.connections import ConnectionManager
from agent.providers import INSTALL_HINTS, PROVIDERS, ProviderSpec, get_available_providers

logger = logging.getLogger(__name__)

# Optional collaborator that turns drawing data into a prose description
DrawingDescriber = Callable[[Dict], Awaitable[str]]


# ============================================================
# Mode / provider selection
# ============================================================

class RuntimeSettings:
    """Active provider and execution mode.

    Switches validate first and commit last, so a rejected switch leaves
    the previous values in place. Requests capture the values when they are
    dispatched; a later switch does not reroute them.
    """

    def __init__(self, provider: str, mode: str, providers: Dict[str, ProviderSpec]):
        self._providers = providers
        self.provider = provider
        self.mode = mode

    def available_providers(self) -> List[str]:
        return get_available_providers(self._providers)

    def set_provider(self, name: str) -> str:
        if not is_valid_provider(name) or name not in self._providers:
            raise UnavailableError(f"Invalid provider: {name} (expected one of {', '.join(PROVIDER_NAMES)})")
        if self.mode == MODE_DIRECT and not self._providers[name].is_available():
            raise UnavailableError(
                f'Provider "{name}" is not installed. Run: {INSTALL_HINTS.get(name, name)}'
            )
        self.provider = name
        logger.info("Switched to provider: %s", name)
        return name

    def set_mode(self, mode: str) -> str:
        if not is_valid_mode(mode):
            raise UnavailableError(f"Invalid mode: {mode} (expected one of {', '.join(AVAILABLE_MODES)})")
        self.mode = mode
        logger.info("Switched to mode: %s", mode)
        return mode


# ============================================================
# Daemon state
# ============================================================

class DaemonState:
    """Per-instance state shared by all connections."""

    def __init__(
        self,
        config: DaemonConfig,
        providers: Optional[Dict[str, ProviderSpec]] = None,
        backend: Optional[LocalBackend] = None,
        describe_drawing: Optional[DrawingDescriber] = None,
    ):
        self.config = config
        self.providers: Dict[str, ProviderSpec] = providers or PROVIDERS
        self.backend: LocalBackend = backend or LocalBackend(config.working_directory)
        self.store = AnnotationStore()
        self.snapshots = SnapshotManager(config.working_directory)
        self.connections = ConnectionManager()
        self.describe_drawing = describe_drawing

        mode = config.default_mode if is_valid_mode(config.default_mode) else MODE_DIRECT
        self.settings = RuntimeSettings(
            self._initial_provider(config.default_provider), mode, self.providers,
        )
        self._unsubscribe = self.store.subscribe(self.connections.on_store_event(self.store))

    @property
    def working_directory(self) -> str:
        return self.config.working_directory

    def _initial_provider(self, requested: str) -> str:
        """Fall back to the first installed provider when the requested one is missing."""
        if requested in self.providers and self.providers[requested].is_available():
            return requested
        available = get_available_providers(self.providers)
        if available:
            logger.info("%s not found, falling back to %s", requested, available[0])
            return available[0]
        logger.warning("No AI providers found. Install the gemini or claude CLI.")
        return requested if is_valid_provider(requested) else PROVIDER_NAMES[0]

    def status(self) -> Dict:
        """Fields shared by the connected greeting and pong."""
        return {
            "provider": self.settings.provider,
            "mode": self.settings.mode,
            "cwd": self.working_directory,
            "availableProviders": self.settings.available_providers(),
            "availableModes": list(AVAILABLE_MODES),
            "mcpServerConnected": self.connections.bridge_connected,
        }

    def close(self) -> None:
        self._unsubscribe()
