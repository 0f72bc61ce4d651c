"""
Durability guard: last-chance attempt write when the learner's page unloads.

The write goes through a ``Beacon``. Its tasks belong to the application,
not to the player session, so closing the session right after the unload
cannot cancel the request. The beacon never raises and never blocks the
caller; the Dispatcher channels remain the primary persistence path.
"""
from __future__ import annotations

import asyncio
import logging

import httpx

from portal.attempts.client import attempt_patch_body, attempt_url, auth_headers
from portal.player.models import AttemptHandle, ProgressSignal

logger = logging.getLogger(__name__)


class Beacon:
    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def send(self, url: str, body: dict, headers: dict[str, str] | None = None) -> bool:
        """Queue a PATCH and return at once. False if no loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Beacon to %s dropped: no running event loop", url)
            return False
        task = loop.create_task(self._deliver(url, body, headers or {}))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _deliver(self, url: str, body: dict, headers: dict[str, str]) -> None:
        try:
            r = await self._http.patch(url, json=body, headers=headers)
            if r.status_code >= 400:
                logger.error("Beacon error %s: %s", r.status_code, r.text[:300])
        except httpx.HTTPError as exc:
            logger.error("Beacon request failed: %s", exc)

    async def aclose(self) -> None:
        """Wait for queued beacons. Called once at application shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class DurabilityGuard:
    def __init__(self, beacon: Beacon, base_url: str, access_token: str | None = None) -> None:
        self._beacon = beacon
        self._base_url = base_url
        self._access_token = access_token

    def on_unload(self, handle: AttemptHandle | None, signal: ProgressSignal) -> bool:
        """Returns True when a write was queued."""
        if handle is None:
            return False
        if not signal.touched and signal.percentage == 0:
            return False
        percentage = 100 if signal.completed else signal.percentage
        queued = self._beacon.send(
            attempt_url(self._base_url, handle.attempt_id),
            attempt_patch_body(percentage),
            auth_headers(self._access_token),
        )
        if queued:
            logger.info("Unload beacon queued for attempt %s at %s%%", handle.attempt_id, percentage)
        return queued
