"""Mediator between a map drawing tool and the feature API.

``DrawingController`` receives the raw events of a map drawing tool
(shape created, shape modified, mode or selection changed, key pressed),
checks them against the ``DrawingStore`` mode, derives lanelet geometry
where needed, and dispatches create/update requests on an executor.

Requests are fire-and-forget from the store's point of view: the store is
marked saving before dispatch and settled (completed, reset or failed)
from the future's done callback. Nothing here raises on request failure;
the error message lands in the store.
"""

from __future__ import annotations

import concurrent.futures
import copy
import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from app.client import api
from app.client import cache as feature_cache
from app.client import drawing
from app.utils import lanelet

logger = logging.getLogger(__name__)

LANELET_FAILURE_MESSAGE = (
    "Unable to generate lanelet geometry. Try drawing a longer centerline."
)
CREATE_FAILURE_MESSAGE = "Failed to create feature."
UPDATE_FAILURE_MESSAGE = "Failed to update feature."

DRAW_MODE_BY_INTENT: dict[str, str] = {
    "point": "draw_point",
    "line": "draw_line_string",
    "polygon": "draw_polygon",
    "lanelet": "draw_line_string",
}

WIDEN_KEYS = frozenset({"+", "="})
NARROW_KEYS = frozenset({"-", "_"})


class DrawTool(Protocol):
    """The parts of a map drawing toolkit the controller drives."""

    def add(self, feature: dict[str, Any]) -> None: ...

    def delete_all(self) -> None: ...

    def change_mode(self, mode: str, **options: Any) -> None: ...


def from_tool_geometry(geometry: dict[str, Any]) -> dict[str, Any]:
    """Copy a drawing-tool geometry into a feature geometry.

    Raises:
        ValueError: For a missing or non-string type, and for
            GeometryCollection, which features cannot hold.
    """
    geometry_type = geometry.get("type") if isinstance(geometry, dict) else None
    if not isinstance(geometry_type, str):
        raise ValueError("Drawn geometry has no type.")
    if geometry_type == "GeometryCollection":
        raise ValueError("GeometryCollection geometries are not supported.")
    return {
        "type": geometry_type,
        "coordinates": copy.deepcopy(geometry.get("coordinates")),
    }


def _error_message(exc: BaseException, fallback: str) -> str:
    if isinstance(exc, api.ApiError):
        return exc.message
    return fallback


class DrawingController:
    """Turns drawing-tool events into store transitions and API calls.

    Args:
        store: Drawing state container owned by the caller.
        client: API client used for create and update requests.
        tool: Map drawing tool receiving mode changes and clears.
        cache: Optional feature cache refreshed after saves.
        executor: Executor running requests; a single worker thread is
            created when omitted.
        resume_after_create: Re-enter the draw mode of the same intent
            after a create settles.
    """

    def __init__(
        self,
        store: drawing.DrawingStore,
        client: api.FeatureApiClient,
        tool: DrawTool,
        *,
        cache: feature_cache.FeatureCache | None = None,
        executor: concurrent.futures.Executor | None = None,
        resume_after_create: bool = True,
    ) -> None:
        self.store = store
        self.client = client
        self.tool = tool
        self.cache = cache
        self._owns_executor = executor is None
        self.executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="feature-save"
        )
        self.resume_after_create = resume_after_create

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    def start_drawing(self, intent: drawing.DrawingIntent) -> None:
        self.store.start_drawing(intent)
        self.tool.delete_all()
        self.tool.change_mode(DRAW_MODE_BY_INTENT[intent])

    def start_selecting(self) -> None:
        self.store.start_selecting()
        self.tool.delete_all()
        self.tool.change_mode("simple_select")

    def start_editing(self, feature: dict[str, Any]) -> None:
        if not self.store.start_editing(feature):
            return
        self.tool.delete_all()
        self.tool.add(copy.deepcopy(feature))
        self.tool.change_mode("direct_select", featureId=str(feature["id"]))

    def cancel_edit(self) -> None:
        """Abandon whatever is in progress and return to idle."""
        self.store.reset()
        self.tool.delete_all()
        self.tool.change_mode("simple_select")

    def handle_draw_create(
        self, features: Sequence[dict[str, Any]]
    ) -> concurrent.futures.Future[Any] | None:
        """Handle the tool's "shape completed" event.

        Returns:
            The future of the create request, or None if nothing was sent.
        """
        state = self.store.state
        if state.mode != "drawing" or state.intent is None:
            return None

        created = next((f for f in features if f.get("geometry")), None)
        if created is None:
            return None

        intent = state.intent
        try:
            geometry = from_tool_geometry(created["geometry"])
        except ValueError as exc:
            self.store.fail(str(exc))
            self.tool.delete_all()
            return None

        if intent == "lanelet":
            lanelet_geometry = lanelet.create_lanelet_geometry(
                geometry.get("coordinates"), state.lanelet_offset
            )
            if lanelet_geometry is None:
                logger.info("Lanelet derivation failed; drawn centerline discarded")
                self.store.fail(LANELET_FAILURE_MESSAGE)
                self.tool.delete_all()
                return None
            geometry = lanelet_geometry

        self.store.mark_saving()
        self.tool.delete_all()

        payload = {"kind": intent, "geometry": geometry, "tags": {}}
        future = self.executor.submit(self.client.create_feature, payload)
        future.add_done_callback(self._settle_create(intent))
        return future

    def _settle_create(
        self, intent: drawing.DrawingIntent
    ) -> Callable[[concurrent.futures.Future[Any]], None]:
        def settle(future: concurrent.futures.Future[Any]) -> None:
            exc = future.exception()
            if exc is None:
                if self.cache is not None:
                    self.cache.feature_saved(future.result())
                self.store.complete_drawing()
            else:
                logger.warning("Creating %s feature failed: %s", intent, exc)
                self.store.fail(_error_message(exc, CREATE_FAILURE_MESSAGE))
            self._resume(intent)

        return settle

    def _resume(self, intent: drawing.DrawingIntent) -> None:
        state = self.store.state
        if self.resume_after_create and state.mode == "drawing" and state.intent == intent:
            self.tool.change_mode(DRAW_MODE_BY_INTENT[intent])

    def handle_draw_update(self, features: Sequence[dict[str, Any]]) -> None:
        """Handle the tool's "shape modified" event while editing."""
        state = self.store.state
        if state.mode != "editing" or state.editing is None:
            return
        updated = next((f for f in features if f.get("geometry")), None)
        if updated is None:
            return
        try:
            self.store.set_draft(from_tool_geometry(updated["geometry"]))
        except ValueError as exc:
            self.store.fail(str(exc))

    def handle_mode_change(self, mode: str) -> None:
        """Keep the tool in the draw mode of the current intent."""
        state = self.store.state
        if (
            state.mode == "drawing"
            and state.intent is not None
            and not state.is_saving
            and mode == "simple_select"
        ):
            self.tool.change_mode(DRAW_MODE_BY_INTENT[state.intent])

    def handle_selection_change(self, features: Sequence[dict[str, Any]]) -> None:
        """Keep the edited feature selected while editing."""
        session = self.store.state.editing
        if self.store.state.mode != "editing" or session is None:
            return
        if not any(str(f.get("id")) == session.feature_id for f in features):
            self.tool.change_mode("direct_select", featureId=session.feature_id)

    def handle_key(self, key: str) -> None:
        """Widen or narrow the lanelet being drawn by one step."""
        state = self.store.state
        if state.mode != "drawing" or state.intent != "lanelet":
            return
        if key in WIDEN_KEYS:
            self.store.adjust_lanelet_offset(lanelet.OFFSET_STEP)
        elif key in NARROW_KEYS:
            self.store.adjust_lanelet_offset(-lanelet.OFFSET_STEP)

    def lanelet_preview(self, centerline: Any) -> dict[str, Any]:
        """Preview lines for the lanelet being drawn, or an empty collection."""
        state = self.store.state
        if state.mode != "drawing" or state.intent != "lanelet":
            return {"type": "FeatureCollection", "features": []}
        return lanelet.lanelet_preview(centerline, state.lanelet_offset)

    def commit_edit(self) -> concurrent.futures.Future[Any] | None:
        """Send the edited geometry with the session's kind and tags.

        Returns:
            The future of the update request, or None if not editing.
        """
        session = self.store.state.editing
        if self.store.state.mode != "editing" or session is None:
            return None

        self.store.mark_saving()
        payload = {
            "kind": session.kind,
            "geometry": session.draft_geometry or session.original_geometry,
            "tags": dict(session.tags),
        }
        future = self.executor.submit(
            self.client.update_feature, session.feature_id, payload
        )
        future.add_done_callback(self._settle_update(session.feature_id))
        return future

    def _settle_update(
        self, feature_id: str
    ) -> Callable[[concurrent.futures.Future[Any]], None]:
        def settle(future: concurrent.futures.Future[Any]) -> None:
            exc = future.exception()
            if exc is None:
                if self.cache is not None:
                    self.cache.feature_saved(future.result())
                self.store.reset()
                self.tool.delete_all()
            else:
                logger.warning("Updating feature %s failed: %s", feature_id, exc)
                self.store.fail(_error_message(exc, UPDATE_FAILURE_MESSAGE))

        return settle
