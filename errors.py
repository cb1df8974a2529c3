"""
Error taxonomy for the Skema daemon.

Handlers raise ``DaemonError`` subclasses; the connection layer turns them
into inline ``error`` replies that echo the request id. Process faults and
revert failures are not exceptions: the first surface as terminal ``error``
stream events, the second as a ``RevertResult`` with ``success=False``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


class DaemonError(Exception):
    """Base class for recoverable, per-request errors"""
    pass


class ProtocolError(DaemonError):
    """Malformed or unknown message"""
    pass


class InvalidTransitionError(ProtocolError):
    """Annotation status change not allowed by the state machine"""
    pass


class NotFoundError(DaemonError):
    """Unknown annotation id"""
    pass


class UnavailableError(DaemonError):
    """Requested provider or mode cannot be activated"""
    pass


class BridgeError(DaemonError):
    """Error reply or lost connection seen by the external agent bridge"""
    pass


class BridgeTimeoutError(BridgeError, TimeoutError):
    """No response arrived within the correlation window"""
    pass


@dataclass
class RevertResult:
    """Outcome of a revert request"""
    success: bool
    message: str
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "files": list(self.files)}
