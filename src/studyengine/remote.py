"""HTTP client for the external study-module and assignment-progress service."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from .content_loader import module_from_dict
from .models import Module, Progress
from .progress import ProgressStoreError
from .settings import Settings

logger = logging.getLogger(__name__)


class RemoteStudyClient:
    """Fetches module definitions and reads/writes progress over REST/JSON.

    Implements the progress backend protocol, so a study session can persist
    straight to the service.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.BaseTransport | None = None) -> RemoteStudyClient:
        return cls(
            settings.api_base_url,
            token=settings.api_token,
            timeout_seconds=settings.http_timeout_seconds,
            transport=transport,
        )

    def fetch_module(self, module_id: str) -> Module:
        """Fetch the full, read-only module definition."""
        data = self._request("GET", f"/study-modules/{module_id}")
        raw = _unwrap(data, "module")
        if not isinstance(raw, Mapping):
            raise ProgressStoreError(f"Module '{module_id}' response is not an object.")
        try:
            return module_from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProgressStoreError(f"Module '{module_id}' response is invalid: {exc}") from exc

    def load_progress(self, module_id: str) -> Progress | None:
        """Return the last saved snapshot, or None on a 404.

        The service counts lesson and step from 0 and answers a student with no
        saved progress with a default 0/0 snapshot, which loads as lesson 1 step 1.
        """
        data = self._request("GET", f"/study-modules/{module_id}/progress", allow_missing=True)
        if data is None:
            return None
        raw = _unwrap(data, "progress")
        if not isinstance(raw, Mapping):
            raise ProgressStoreError(f"Progress response for module '{module_id}' is not an object.")
        return Progress.from_payload(raw, zero_based=True)

    def save_progress(
        self,
        module_id: str,
        progress: Progress,
        *,
        include_current_step_completed: bool,
        module_completed: bool,
    ) -> None:
        """Write the full snapshot, with 0-based positions, plus the reason flags."""
        payload = progress.to_payload(zero_based=True)
        payload["includeCurrentStepCompleted"] = include_current_step_completed
        payload["moduleCompleted"] = module_completed
        self._request("POST", f"/study-modules/{module_id}/progress", json=payload)
        logger.debug(
            "Saved progress for module %s at lesson %d step %d",
            module_id,
            progress.current_lesson,
            progress.current_step,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, *, allow_missing: bool = False, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ProgressStoreError(f"{method} {path} failed: {exc}") from exc
        if allow_missing and response.status_code == 404:
            return None
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("%s %s returned HTTP %d", method, path, response.status_code)
            raise ProgressStoreError(f"{method} {path} returned HTTP {response.status_code}") from exc
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProgressStoreError(f"{method} {path} returned invalid JSON") from exc


def _unwrap(data: Any, key: str) -> Any:
    """Peel the ``data`` / ``<key>`` envelopes the service may add."""
    if isinstance(data, Mapping) and isinstance(data.get("data"), Mapping):
        data = data["data"]
    if isinstance(data, Mapping) and isinstance(data.get(key), Mapping):
        data = data[key]
    return data
