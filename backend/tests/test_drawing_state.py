"""Tests for the drawing/editing state container."""

from __future__ import annotations

import threading
from typing import Any

from app.client import drawing
from app.utils import lanelet

FEATURE: dict[str, Any] = {
    "type": "Feature",
    "id": "f-1",
    "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
    "properties": {"kind": "road", "tags": {"name": "Main"}},
}


def test_initial_state_is_idle() -> None:
    """Test the default state."""
    state = drawing.DrawingStore().state
    assert state == drawing.DrawingState()
    assert state.mode == "idle"
    assert state.lanelet_offset == lanelet.DEFAULT_OFFSET


def test_stores_are_independent() -> None:
    """Test that two stores do not share state."""
    first, second = drawing.DrawingStore(), drawing.DrawingStore()
    first.start_drawing("point")
    assert second.state.mode == "idle"


def test_start_drawing_drops_edit_session() -> None:
    """Test that drawing replaces editing and clears errors."""
    store = drawing.DrawingStore()
    store.start_editing(FEATURE)
    store.fail("boom")
    store.start_drawing("polygon")
    state = store.state
    assert (state.mode, state.intent, state.editing, state.error) == (
        "drawing",
        "polygon",
        None,
        None,
    )


def test_start_drawing_lanelet_resets_offset() -> None:
    """Test that a new lanelet starts from the default half-width."""
    store = drawing.DrawingStore(drawing.DrawingState(lanelet_offset=8.0))
    store.start_drawing("line")
    assert store.state.lanelet_offset == 8.0
    store.start_drawing("lanelet")
    assert store.state.lanelet_offset == lanelet.DEFAULT_OFFSET


def test_start_selecting_toggles() -> None:
    """Test that selecting twice returns to idle."""
    store = drawing.DrawingStore()
    store.start_selecting()
    assert store.state.mode == "selecting"
    store.start_selecting()
    assert store.state.mode == "idle"


def test_start_editing_copies_geometry() -> None:
    """Test the edit session snapshot."""
    store = drawing.DrawingStore()
    assert store.start_editing(FEATURE) is True
    session = store.state.editing
    assert session is not None
    assert session.feature_id == "f-1"
    assert session.kind == "road"
    assert session.tags == {"name": "Main"}
    assert session.original_geometry == FEATURE["geometry"]
    assert session.original_geometry is not FEATURE["geometry"]
    assert session.draft_geometry == session.original_geometry


def test_start_editing_ignored_while_drawing() -> None:
    """Test that an in-progress drawing is not interrupted."""
    store = drawing.DrawingStore()
    store.start_drawing("point")
    assert store.start_editing(FEATURE) is False
    assert store.state.mode == "drawing"


def test_set_draft_only_while_editing() -> None:
    """Test draft updates inside and outside a session."""
    store = drawing.DrawingStore()
    moved = {"type": "LineString", "coordinates": [[0, 0], [2, 2]]}
    store.set_draft(moved)
    assert store.state.editing is None

    store.start_editing(FEATURE)
    store.set_draft(moved)
    session = store.state.editing
    assert session is not None
    assert session.draft_geometry == moved
    assert session.original_geometry == FEATURE["geometry"]


def test_saving_lifecycle() -> None:
    """Test mark_saving, complete_drawing and fail."""
    store = drawing.DrawingStore()
    store.start_drawing("point")
    store.mark_saving()
    assert store.state.is_saving is True
    store.complete_drawing()
    assert (store.state.mode, store.state.is_saving) == ("drawing", False)

    store.mark_saving()
    store.fail("Failed to create feature.")
    assert store.state.is_saving is False
    assert store.state.error == "Failed to create feature."
    store.clear_error()
    assert store.state.error is None


def test_complete_drawing_outside_drawing_is_noop() -> None:
    """Test that completing only applies in drawing mode."""
    store = drawing.DrawingStore()
    store.start_editing(FEATURE)
    store.mark_saving()
    store.complete_drawing()
    assert store.state.is_saving is True


def test_reset_restores_defaults() -> None:
    """Test that reset returns to the initial state."""
    store = drawing.DrawingStore()
    store.start_drawing("lanelet")
    store.set_lanelet_offset(6.0)
    store.reset()
    assert store.state == drawing.DrawingState()


def test_lanelet_offset_is_clamped() -> None:
    """Test the half-width bounds and step adjustment."""
    store = drawing.DrawingStore()
    store.set_lanelet_offset(100)
    assert store.state.lanelet_offset == lanelet.MAX_OFFSET
    store.adjust_lanelet_offset(-100)
    assert store.state.lanelet_offset == lanelet.MIN_OFFSET
    store.adjust_lanelet_offset(lanelet.OFFSET_STEP)
    assert store.state.lanelet_offset == 2.0


def test_listeners_receive_each_state() -> None:
    """Test subscription, notification and unsubscription."""
    store = drawing.DrawingStore()
    seen: list[drawing.DrawingState] = []
    unsubscribe = store.subscribe(seen.append)

    store.start_drawing("point")
    store.set_lanelet_offset(lanelet.DEFAULT_OFFSET)
    assert [state.mode for state in seen] == ["drawing"]

    unsubscribe()
    store.reset()
    assert len(seen) == 1


def test_set_draft_cannot_revive_session_after_reset() -> None:
    """Test that a draft update waiting on another thread sees the reset."""
    store = drawing.DrawingStore()
    store.start_editing(FEATURE)
    moved = {"type": "LineString", "coordinates": [[0, 0], [3, 3]]}

    with store._lock:
        worker = threading.Thread(target=store.set_draft, args=(moved,))
        worker.start()
        worker.join(timeout=0.1)
        assert worker.is_alive()
        store.reset()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert store.state.mode == "idle"
    assert store.state.editing is None


def test_unsubscribe_from_another_thread() -> None:
    """Test that listeners can be removed while transitions run."""
    store = drawing.DrawingStore()
    seen: list[str] = []
    unsubscribe = store.subscribe(lambda state: seen.append(state.mode))

    worker = threading.Thread(target=unsubscribe)
    worker.start()
    worker.join(timeout=5)
    store.start_drawing("line")

    assert seen == []
