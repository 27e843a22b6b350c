"""Client-side feature cache with optimistic tag updates.

Tag edits follow a three-phase protocol:

1. snapshot the cached feature,
2. apply the speculative merge (delete-then-set) to the cache,
3. reconcile after the request settles: restore the snapshot on failure,
   then re-fetch the feature either way so the cache matches the server.

List results are cached per query and dropped whenever a mutation may
have changed them.
"""

from __future__ import annotations

import copy
import datetime
import logging
import threading
from collections.abc import Sequence
from typing import Any

from app.client import api
from app.services import tags as tag_rules

logger = logging.getLogger(__name__)

ListKey = tuple[tuple[float, ...] | None, int | None, int | None]


class FeatureCache:
    """Detail and list cache in front of a FeatureApiClient."""

    def __init__(self, client: api.FeatureApiClient) -> None:
        self.client = client
        self._details: dict[str, dict[str, Any]] = {}
        self._lists: dict[ListKey, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def cached(self, feature_id: str) -> dict[str, Any] | None:
        with self._lock:
            feature = self._details.get(feature_id)
        return copy.deepcopy(feature) if feature is not None else None

    def get_feature(self, feature_id: str, *, refresh: bool = False) -> dict[str, Any]:
        if not refresh:
            feature = self.cached(feature_id)
            if feature is not None:
                return feature
        feature = self.client.get_feature(feature_id)
        self.store(feature)
        return copy.deepcopy(feature)

    def list_features(
        self,
        *,
        bbox: Sequence[float] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        key: ListKey = (tuple(bbox) if bbox is not None else None, limit, offset)
        with self._lock:
            cached = self._lists.get(key)
        if cached is not None:
            return copy.deepcopy(cached)
        collection = self.client.list_features(bbox=bbox, limit=limit, offset=offset)
        with self._lock:
            self._lists[key] = collection
        return copy.deepcopy(collection)

    def store(self, feature: dict[str, Any]) -> None:
        with self._lock:
            self._details[str(feature["id"])] = copy.deepcopy(feature)

    def invalidate_lists(self) -> None:
        with self._lock:
            self._lists.clear()

    def remove(self, feature_id: str) -> None:
        with self._lock:
            self._details.pop(feature_id, None)
            self._lists.clear()

    def feature_saved(self, feature: dict[str, Any]) -> None:
        """Record a created or replaced feature and drop stale lists."""
        self.store(feature)
        self.invalidate_lists()

    def delete_feature(self, feature_id: str) -> None:
        """Delete on the server, then evict the detail and every list."""
        self.client.delete_feature(feature_id)
        self.remove(feature_id)

    def update_tags(
        self, feature_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Send a tag mutation with an optimistic cache update.

        Raises:
            ValidationError: If the payload breaks the tag rules; nothing
                is sent and the cache is untouched.
            ApiError: If the request fails; the cached feature is restored
                before the error propagates.
        """
        mutation = tag_rules.validate_mutation(payload)

        with self._lock:
            snapshot = copy.deepcopy(self._details.get(feature_id))
            if snapshot is not None:
                self._details[feature_id] = _apply_optimistic(snapshot, mutation)

        try:
            updated = self.client.update_feature_tags(feature_id, payload)
        except api.ApiError:
            with self._lock:
                if snapshot is not None:
                    self._details[feature_id] = snapshot
                else:
                    self._details.pop(feature_id, None)
            raise
        else:
            self.store(updated)
            return copy.deepcopy(updated)
        finally:
            self._reconcile(feature_id)

    def _reconcile(self, feature_id: str) -> None:
        self.invalidate_lists()
        try:
            self.store(self.client.get_feature(feature_id))
        except api.ApiError as exc:
            logger.warning("Could not re-fetch feature %s: %s", feature_id, exc.message)
            if exc.status == 404:
                self.remove(feature_id)


def _apply_optimistic(
    feature: dict[str, Any], mutation: tag_rules.TagMutation
) -> dict[str, Any]:
    speculative = copy.deepcopy(feature)
    properties = speculative.setdefault("properties", {})
    properties["tags"] = tag_rules.apply_mutation(
        properties.get("tags") or {}, mutation
    )
    properties["updatedAt"] = datetime.datetime.now(tz=datetime.UTC).isoformat()
    return speculative
