"""
Backend attempts client: async httpx calls against the system of record.

One instance per player session, bound to the learner's bearer token. The
underlying ``httpx.AsyncClient`` is owned by the application and shared.

Endpoints:
  GET   /scorm-packages/{packageId}/launch      → launch handle
  PATCH /attempts/{attemptId}                   → persist percentage/status
  PATCH /attempts/{attemptId}/sync-progress     → re-pull from the SCORM host
"""
from __future__ import annotations

import logging
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from portal.attempts.schemas import (
    AttemptPatchRequest,
    LaunchResponse,
    SyncProgressEnvelope,
    SyncProgressResult,
)
from portal.exceptions import LaunchUnavailableError, SyncFailedError
from portal.player.models import derive_status

logger = logging.getLogger(__name__)


def attempt_url(base_url: str, attempt_id: str) -> str:
    return f"{base_url.rstrip('/')}/attempts/{quote(attempt_id, safe='')}"


def attempt_patch_body(percentage: int) -> dict:
    return AttemptPatchRequest(
        completion_percentage=percentage,
        status=derive_status(percentage),
    ).to_wire()


def auth_headers(access_token: str | None) -> dict[str, str]:
    if not access_token:
        return {}
    return {"Authorization": f"Bearer {access_token}"}


class AttemptsClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        access_token: str | None = None,
    ) -> None:
        self._http = http
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token

    @property
    def headers(self) -> dict[str, str]:
        return auth_headers(self.access_token)

    async def get_launch(self, package_id: str) -> LaunchResponse:
        """Raises LaunchUnavailableError on transport errors, non-2xx, or missing fields."""
        url = f"{self.base_url}/scorm-packages/{quote(package_id, safe='')}/launch"
        try:
            response = await self._http.get(url, headers=self.headers)
        except httpx.HTTPError as exc:
            raise LaunchUnavailableError(package_id, f"request failed: {exc}") from exc

        if response.status_code >= 400:
            raise LaunchUnavailableError(package_id, f"HTTP {response.status_code}")

        try:
            return LaunchResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise LaunchUnavailableError(package_id, "incomplete launch payload") from exc

    async def patch_attempt(self, attempt_id: str, percentage: int) -> None:
        body = attempt_patch_body(percentage)
        try:
            response = await self._http.patch(
                attempt_url(self.base_url, attempt_id),
                json=body,
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise SyncFailedError(attempt_id, str(exc)) from exc
        if response.status_code >= 400:
            raise SyncFailedError(attempt_id, f"HTTP {response.status_code}: {response.text[:300]}")

    async def sync_progress(self, attempt_id: str) -> SyncProgressResult:
        """Ask the backend to reconcile with the SCORM host.

        The returned ``attempt_id`` may differ from the one requested when the
        backend rotated the attempt.
        """
        url = f"{attempt_url(self.base_url, attempt_id)}/sync-progress"
        try:
            response = await self._http.patch(url, headers=self.headers)
        except httpx.HTTPError as exc:
            raise SyncFailedError(attempt_id, str(exc)) from exc
        if response.status_code >= 400:
            raise SyncFailedError(attempt_id, f"HTTP {response.status_code}: {response.text[:300]}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SyncFailedError(attempt_id, "invalid JSON in sync response") from exc

        try:
            if isinstance(payload, dict) and "data" in payload:
                return SyncProgressEnvelope.model_validate(payload).data
            return SyncProgressResult.model_validate(payload)
        except ValidationError as exc:
            raise SyncFailedError(attempt_id, "unexpected sync response shape") from exc
