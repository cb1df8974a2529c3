"""
Tests for the annotation store: queueing, status transitions and listeners.
"""

import pytest

from annotation_store import (
    AnnotationStore, RESOLVED_BY_HUMAN, STATUS_ACKNOWLEDGED, STATUS_DISMISSED,
    STATUS_PENDING, STATUS_RESOLVED, validate_annotation_payload,
)
from errors import InvalidTransitionError, NotFoundError, ProtocolError


def _dom(ann_id="a1", **extra):
    return {"id": ann_id, "type": "dom_selection", "selector": "#hero", "tagName": "DIV", **extra}


def test_enqueue_creates_pending_record():
    store = AnnotationStore()
    record = store.enqueue(_dom(), "make it blue")
    assert record.id == "a1"
    assert record.status == STATUS_PENDING
    assert record.comment == "make it blue"
    assert store.pending_count() == 1
    assert "a1" in store


def test_enqueue_assigns_id_when_missing():
    store = AnnotationStore()
    record = store.enqueue({"type": "gesture", "gesture": "circle"})
    assert record.id.startswith("ann-")
    assert record.annotation["id"] == record.id


def test_generated_ids_do_not_collide():
    store = AnnotationStore()
    first = store.enqueue({"type": "gesture", "gesture": "circle"})
    second = store.enqueue({"type": "gesture", "gesture": "circle"})
    assert first.id != second.id
    assert store.pending_count() == 2


def test_enqueue_rejects_duplicate_id():
    store = AnnotationStore()
    store.enqueue(_dom())
    with pytest.raises(ProtocolError):
        store.enqueue(_dom())
    assert len(store) == 1


def test_invalid_payload_rejected():
    with pytest.raises(ProtocolError):
        validate_annotation_payload({"type": "scribble"})
    with pytest.raises(ProtocolError):
        validate_annotation_payload("not a dict")


def test_pending_lists_in_insertion_order():
    store = AnnotationStore()
    for ann_id in ("c", "a", "b"):
        store.enqueue(_dom(ann_id))
    store.acknowledge("a")
    assert [r.id for r in store.list_pending()] == ["c", "b"]
    assert [r.id for r in store.list_all()] == ["c", "a", "b"]


def test_full_lifecycle_to_resolved():
    store = AnnotationStore()
    store.enqueue(_dom())
    assert store.acknowledge("a1").status == STATUS_ACKNOWLEDGED
    record = store.resolve("a1", "Changed the colour")
    assert record.status == STATUS_RESOLVED
    assert record.resolution_summary == "Changed the colour"
    assert record.to_dict()["resolvedBy"] == "agent"
    assert store.counts() == {"pending": 0, "acknowledged": 0, "resolved": 1, "dismissed": 0}


def test_dismiss_from_pending_records_reason():
    store = AnnotationStore()
    store.enqueue(_dom())
    record = store.dismiss("a1", "out of scope", resolved_by=RESOLVED_BY_HUMAN)
    assert record.status == STATUS_DISMISSED
    data = record.to_dict()
    assert data["dismissalReason"] == "out of scope"
    assert data["resolvedBy"] == "human"


def test_terminal_states_reject_transitions():
    store = AnnotationStore()
    store.enqueue(_dom())
    store.resolve("a1")
    with pytest.raises(InvalidTransitionError):
        store.dismiss("a1", "too late")
    with pytest.raises(InvalidTransitionError):
        store.acknowledge("a1")
    assert store.get("a1").status == STATUS_RESOLVED


def test_acknowledge_twice_is_rejected():
    store = AnnotationStore()
    store.enqueue(_dom())
    store.acknowledge("a1")
    with pytest.raises(InvalidTransitionError):
        store.acknowledge("a1")


def test_unknown_id_raises_not_found():
    store = AnnotationStore()
    with pytest.raises(NotFoundError):
        store.get("missing")
    with pytest.raises(NotFoundError):
        store.resolve("missing")


def test_remove_and_clear():
    store = AnnotationStore()
    store.enqueue(_dom("a"))
    store.enqueue(_dom("b"))
    store.enqueue(_dom("c"))
    store.remove("a")
    assert "a" not in store
    assert store.clear() == 2
    assert len(store) == 0


def test_listeners_receive_events_and_can_unsubscribe():
    store = AnnotationStore()
    seen = []
    unsubscribe = store.subscribe(lambda event, record: seen.append((event, record.id, record.status)))
    store.enqueue(_dom())
    store.acknowledge("a1")
    unsubscribe()
    store.remove("a1")
    assert seen == [("created", "a1", "pending"), ("updated", "a1", "acknowledged")]


def test_failing_listener_does_not_break_mutation():
    store = AnnotationStore()

    def boom(event, record):
        raise RuntimeError("listener bug")

    store.subscribe(boom)
    record = store.enqueue(_dom())
    assert record.status == STATUS_PENDING
