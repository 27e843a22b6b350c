"""HTTP client for the feature REST API.

Example:
    >>> from app.client.api import FeatureApiClient
    >>> with FeatureApiClient("http://localhost:3000") as client:
    ...     collection = client.list_features(limit=10)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from app.core import config

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when the API answers with a non-2xx status.

    Attributes:
        message: Server ``message`` or a generic status message.
        status: HTTP status code, or None when no response was received.
        details: Parsed response body, if any.
    """

    def __init__(
        self, message: str, status: int | None = None, details: Any = None
    ) -> None:
        self.message = message
        self.status = status
        self.details = details
        super().__init__(message)


class NetworkError(ApiError):
    """Raised when a request never reached the server."""


class FeatureApiClient:
    """Thin synchronous wrapper over the ``/features`` endpoints.

    Args:
        base_url: API root, e.g. ``http://localhost:3000``.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: config.Settings) -> FeatureApiClient:
        return cls(
            str(settings.api_base_url), timeout=settings.request_timeout_seconds
        )

    def __enter__(self) -> FeatureApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = self._client.request(method, path, params=params, json=json)
        except httpx.TransportError as exc:
            logger.warning("%s %s did not reach the server: %s", method, path, exc)
            raise NetworkError(f"Network error: {exc}") from exc

        body: Any = None
        if response.content:
            content_type = response.headers.get("content-type", "")
            if "application/json" in content_type:
                try:
                    body = response.json()
                except ValueError:
                    logger.warning("Failed to parse JSON response from %s", path)
                    body = response.text
            else:
                body = response.text

        if response.is_error:
            message = (
                str(body["message"])
                if isinstance(body, dict) and "message" in body
                else f"Request failed with status {response.status_code}"
            )
            raise ApiError(message, response.status_code, body)
        return body

    def list_features(
        self,
        *,
        bbox: Sequence[float] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, str] = {}
        if limit is not None:
            params["limit"] = str(limit)
        if offset is not None:
            params["offset"] = str(offset)
        if bbox is not None:
            params["bbox"] = ",".join(str(value) for value in bbox)
        return self._request("GET", "/features", params=params or None)

    def get_feature(self, feature_id: str) -> dict[str, Any]:
        return self._request("GET", f"/features/{feature_id}")

    def create_feature(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/features", json=payload)

    def update_feature(
        self, feature_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request("PUT", f"/features/{feature_id}", json=payload)

    def update_feature_tags(
        self, feature_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request("PATCH", f"/features/{feature_id}/tags", json=payload)

    def delete_feature(self, feature_id: str) -> None:
        self._request("DELETE", f"/features/{feature_id}")
