"""
In-memory annotation queue for queued (mcp) mode.

Annotations submitted while the daemon is in queued mode wait here until an
external agent picks them up through the bridge. Records move through a small
state machine:

    pending -> acknowledged -> resolved | dismissed
    pending -> resolved | dismissed

resolved and dismissed are terminal. All mutation goes through
``AnnotationStore``; listeners receive ``created`` / ``updated`` / ``deleted``
events after each change.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from errors import InvalidTransitionError, NotFoundError, ProtocolError

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_ACKNOWLEDGED = "acknowledged"
STATUS_RESOLVED = "resolved"
STATUS_DISMISSED = "dismissed"

STATUSES = (STATUS_PENDING, STATUS_ACKNOWLEDGED, STATUS_RESOLVED, STATUS_DISMISSED)

# status -> statuses it may move to
TRANSITIONS: Dict[str, frozenset] = {
    STATUS_PENDING: frozenset({STATUS_ACKNOWLEDGED, STATUS_RESOLVED, STATUS_DISMISSED}),
    STATUS_ACKNOWLEDGED: frozenset({STATUS_RESOLVED, STATUS_DISMISSED}),
    STATUS_RESOLVED: frozenset(),
    STATUS_DISMISSED: frozenset(),
}

ANNOTATION_KINDS = ("dom_selection", "drawing", "gesture")

RESOLVED_BY_HUMAN = "human"
RESOLVED_BY_AGENT = "agent"

EVENT_CREATED = "created"
EVENT_UPDATED = "updated"
EVENT_DELETED = "deleted"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class AnnotationRecord:
    """A queued annotation and its workflow state."""
    id: str
    annotation: Dict[str, Any]
    comment: str = ""
    status: str = STATUS_PENDING
    created_at: str = ""
    updated_at: str = ""
    resolved_by: Optional[str] = None
    resolution_summary: Optional[str] = None
    dismissal_reason: Optional[str] = None
    vision_description: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.annotation.get("type", "")

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.status]

    def to_dict(self) -> Dict[str, Any]:
        """Wire form (camelCase keys, optional fields omitted when unset)."""
        data: Dict[str, Any] = {
            "id": self.id,
            "annotation": self.annotation,
            "comment": self.comment,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        optional = {
            "resolvedBy": self.resolved_by,
            "resolutionSummary": self.resolution_summary,
            "dismissalReason": self.dismissal_reason,
            "visionDescription": self.vision_description,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


StoreListener = Callable[[str, AnnotationRecord], None]


def validate_annotation_payload(annotation: Any) -> Dict[str, Any]:
    """Check the tagged payload shape. Returns the payload as a dict."""
    if not isinstance(annotation, dict):
        raise ProtocolError("Missing annotation payload")
    kind = annotation.get("type")
    if kind not in ANNOTATION_KINDS:
        raise ProtocolError(
            f"Invalid annotation type: {kind!r} (expected one of {', '.join(ANNOTATION_KINDS)})"
        )
    return annotation


class AnnotationStore:
    """
    Owns every AnnotationRecord. Insertion order is preserved for listing.

    Methods never await, so on the daemon's event loop each call runs to
    completion before the next message is processed.
    """

    def __init__(self):
        self._records: Dict[str, AnnotationRecord] = {}
        self._listeners: List[StoreListener] = []

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    def _notify(self, event: str, record: AnnotationRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, record)
            except Exception:
                logger.exception("Annotation store listener failed on %s", event)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def enqueue(self, annotation: Dict[str, Any], comment: str = "",
                vision_description: Optional[str] = None) -> AnnotationRecord:
        """Create a pending record for an annotation payload."""
        annotation = validate_annotation_payload(annotation)
        ann_id = str(annotation.get("id") or f"ann-{uuid.uuid4().hex}")
        if ann_id in self._records:
            raise ProtocolError(f"Annotation {ann_id} is already queued")
        now = _now_iso()
        record = AnnotationRecord(
            id=ann_id,
            annotation={**annotation, "id": ann_id},
            comment=comment or "",
            created_at=now,
            updated_at=now,
            vision_description=vision_description,
        )
        self._records[ann_id] = record
        logger.info("Queued annotation %s: %r", ann_id, record.comment[:50])
        self._notify(EVENT_CREATED, record)
        return record

    def acknowledge(self, ann_id: str) -> AnnotationRecord:
        """Mark an annotation as seen by the agent."""
        return self._transition(ann_id, STATUS_ACKNOWLEDGED)

    def resolve(self, ann_id: str, summary: Optional[str] = None,
                resolved_by: str = RESOLVED_BY_AGENT) -> AnnotationRecord:
        """Mark an annotation as implemented."""
        return self._transition(
            ann_id, STATUS_RESOLVED,
            resolved_by=resolved_by, resolution_summary=summary,
        )

    def dismiss(self, ann_id: str, reason: str,
                resolved_by: str = RESOLVED_BY_AGENT) -> AnnotationRecord:
        """Mark an annotation as intentionally not addressed."""
        return self._transition(
            ann_id, STATUS_DISMISSED,
            resolved_by=resolved_by, dismissal_reason=reason,
        )

    def remove(self, ann_id: str) -> AnnotationRecord:
        record = self._require(ann_id)
        del self._records[ann_id]
        self._notify(EVENT_DELETED, record)
        return record

    def clear(self) -> int:
        """Drop every record. Returns how many were removed."""
        removed = list(self._records.values())
        self._records.clear()
        for record in removed:
            self._notify(EVENT_DELETED, record)
        return len(removed)

    def _transition(self, ann_id: str, status: str, **fields: Any) -> AnnotationRecord:
        record = self._require(ann_id)
        if status not in TRANSITIONS[record.status]:
            raise InvalidTransitionError(
                f"Annotation {ann_id} cannot move from {record.status} to {status}"
            )
        record.status = status
        for name, value in fields.items():
            setattr(record, name, value)
        record.updated_at = _now_iso()
        logger.info("Annotation %s -> %s", ann_id, status)
        self._notify(EVENT_UPDATED, record)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _require(self, ann_id: str) -> AnnotationRecord:
        record = self._records.get(ann_id)
        if record is None:
            raise NotFoundError(f"Annotation not found: {ann_id}")
        return record

    def get(self, ann_id: str) -> AnnotationRecord:
        return self._require(ann_id)

    def list_pending(self) -> List[AnnotationRecord]:
        return [r for r in self._records.values() if r.status == STATUS_PENDING]

    def list_all(self) -> List[AnnotationRecord]:
        return list(self._records.values())

    def pending_count(self) -> int:
        return sum(1 for r in self._records.values() if r.status == STATUS_PENDING)

    def counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in STATUSES}
        for record in self._records.values():
            counts[record.status] += 1
        return counts

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, ann_id: str) -> bool:
        return ann_id in self._records
