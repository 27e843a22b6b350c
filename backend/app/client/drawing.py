"""Drawing and editing state machine for the map client.

``DrawingStore`` is an explicitly owned state container: the application
creates one and passes it to whatever drives the map, and tests create as
many independent stores as they need. State is an immutable
``DrawingState`` that every transition replaces; subscribed listeners are
called with the new state after each replacement.

Modes:

- ``idle``: nothing in progress.
- ``drawing``: the user is drawing a new feature of ``intent`` kind.
- ``editing``: the geometry of an existing feature is being modified;
  ``editing`` holds the session.
- ``selecting``: the next clicked feature will be opened.

The store never raises on save failures. ``fail`` records the message and
clears ``is_saving`` so the UI cannot get stuck in a saving state. It also
does not reject calls while ``is_saving`` is set; triggering controls are
expected to be disabled instead.

Example:
    >>> store = DrawingStore()
    >>> store.start_drawing("lanelet")
    >>> store.state.mode, store.state.intent
    ('drawing', 'lanelet')
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
from collections.abc import Callable
from typing import Any, Literal

from app.utils import lanelet

logger = logging.getLogger(__name__)

DrawingMode = Literal["idle", "drawing", "editing", "selecting"]
DrawingIntent = Literal["point", "line", "polygon", "lanelet"]

Listener = Callable[["DrawingState"], None]


@dataclasses.dataclass(frozen=True)
class EditingSession:
    """Snapshot of the feature whose geometry is being edited."""

    feature_id: str
    kind: str
    tags: dict[str, str]
    original_geometry: dict[str, Any]
    draft_geometry: dict[str, Any]


@dataclasses.dataclass(frozen=True)
class DrawingState:
    mode: DrawingMode = "idle"
    intent: DrawingIntent | None = None
    editing: EditingSession | None = None
    is_saving: bool = False
    error: str | None = None
    lanelet_offset: float = lanelet.DEFAULT_OFFSET


class DrawingStore:
    """Owner of the client drawing state.

    Every transition reads, decides and replaces under one lock, so
    settle callbacks arriving from executor threads cannot interleave
    with user-driven transitions. Listeners run outside the lock.

    Args:
        initial: Optional starting state, defaults to idle.
    """

    def __init__(self, initial: DrawingState | None = None) -> None:
        self._state = initial or DrawingState()
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> DrawingState:
        with self._lock:
            return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _transition(
        self, decide: Callable[[DrawingState], dict[str, Any] | None]
    ) -> bool:
        with self._lock:
            changes = decide(self._state)
            if changes is None:
                return False
            self._state = dataclasses.replace(self._state, **changes)
            state = self._state
            listeners = list(self._listeners)
        for listener in listeners:
            listener(state)
        return True

    def _replace(self, **changes: Any) -> None:
        self._transition(lambda _state: changes)

    def start_drawing(self, intent: DrawingIntent) -> None:
        """Enter drawing mode for ``intent``, dropping any edit session.

        Starting a lanelet resets the lane half-width to the default.
        """

        def decide(state: DrawingState) -> dict[str, Any]:
            offset = (
                lanelet.DEFAULT_OFFSET if intent == "lanelet" else state.lanelet_offset
            )
            return {
                "mode": "drawing",
                "intent": intent,
                "editing": None,
                "is_saving": False,
                "error": None,
                "lanelet_offset": offset,
            }

        self._transition(decide)

    def start_selecting(self) -> None:
        """Enter selecting mode, or cancel it if already selecting."""

        def decide(state: DrawingState) -> dict[str, Any]:
            if state.mode == "selecting":
                return _IDLE
            return {
                "mode": "selecting",
                "intent": None,
                "editing": None,
                "is_saving": False,
                "error": None,
            }

        self._transition(decide)

    def start_editing(self, feature: dict[str, Any]) -> bool:
        """Open an editing session on a GeoJSON feature.

        Allowed from any mode except ``drawing``; returns False when
        ignored.
        """

        def decide(state: DrawingState) -> dict[str, Any] | None:
            if state.mode == "drawing":
                logger.debug("Ignoring start_editing while drawing")
                return None
            properties = feature.get("properties") or {}
            geometry = feature["geometry"]
            return {
                "mode": "editing",
                "intent": None,
                "is_saving": False,
                "error": None,
                "editing": EditingSession(
                    feature_id=str(feature["id"]),
                    kind=properties["kind"],
                    tags=dict(properties.get("tags") or {}),
                    original_geometry=copy.deepcopy(geometry),
                    draft_geometry=copy.deepcopy(geometry),
                ),
            }

        return self._transition(decide)

    def set_draft(self, geometry: dict[str, Any]) -> None:
        """Replace the draft geometry; no-op outside an editing session."""
        draft = copy.deepcopy(geometry)

        def decide(state: DrawingState) -> dict[str, Any] | None:
            if state.mode != "editing" or state.editing is None:
                return None
            return {"editing": dataclasses.replace(state.editing, draft_geometry=draft)}

        self._transition(decide)

    def mark_saving(self) -> None:
        self._replace(is_saving=True, error=None)

    def complete_drawing(self) -> None:
        """Clear saving/error after a create; mode is left unchanged."""
        self._transition(
            lambda state: {"is_saving": False, "error": None}
            if state.mode == "drawing"
            else None
        )

    def fail(self, message: str) -> None:
        self._replace(is_saving=False, error=message)

    def clear_error(self) -> None:
        self._replace(error=None)

    def reset(self) -> None:
        """Return to idle with the default lane half-width."""
        self._replace(**_IDLE)

    def set_lanelet_offset(self, value: float) -> None:
        """Set the lane half-width, clamped; silent when unchanged."""
        self._transition(lambda state: _offset_change(state, value))

    def adjust_lanelet_offset(self, delta: float) -> None:
        self._transition(
            lambda state: _offset_change(state, state.lanelet_offset + delta)
        )


_IDLE: dict[str, Any] = {
    "mode": "idle",
    "intent": None,
    "editing": None,
    "is_saving": False,
    "error": None,
    "lanelet_offset": lanelet.DEFAULT_OFFSET,
}


def _offset_change(state: DrawingState, value: float) -> dict[str, Any] | None:
    clamped = lanelet.clamp_offset(value)
    if clamped == state.lanelet_offset:
        return None
    return {"lanelet_offset": clamped}
