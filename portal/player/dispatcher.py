"""Dual-channel sync dispatcher.

Local persistence channel: ``PATCH /attempts/{id}`` shortly after each
accepted transition. Upstream confirmation channel: ``sync-progress`` after a
longer delay; its result goes back to the engine, which may adopt a rotated
attempt id. Both channels are fire-and-forget except ``flush``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from portal.attempts.client import AttemptsClient
from portal.attempts.schemas import SyncProgressResult
from portal.exceptions import SyncFailedError
from portal.player.jobs import CoalescingJob, Scheduler
from portal.player.models import AttemptHandle

logger = logging.getLogger(__name__)

RemoteResultHandler = Callable[[AttemptHandle, str, SyncProgressResult], None]


class SyncDispatcher:
    def __init__(
        self,
        client: AttemptsClient,
        scheduler: Scheduler,
        *,
        local_delay: float = 1.0,
        upstream_delay: float = 5.0,
        on_remote_result: RemoteResultHandler | None = None,
    ) -> None:
        self._client = client
        self.on_remote_result = on_remote_result
        self.local = CoalescingJob("local", local_delay, self._send_local, scheduler)
        self.upstream = CoalescingJob("upstream", upstream_delay, self._send_upstream, scheduler)

    def schedule(self, handle: AttemptHandle, percentage: int) -> None:
        self.local.schedule(handle, percentage)
        self.upstream.schedule(handle, percentage)

    def cancel(self, attempt_id: str) -> None:
        self.local.cancel(attempt_id)
        self.upstream.cancel(attempt_id)

    def cancel_all(self) -> None:
        self.local.cancel_all()
        self.upstream.cancel_all()

    def retarget(self, old_attempt_id: str, handle: AttemptHandle) -> None:
        self.local.retarget(old_attempt_id, handle)
        self.upstream.retarget(old_attempt_id, handle)

    async def flush(
        self, handle: AttemptHandle, percentage: int | None,
    ) -> SyncProgressResult | None:
        """Send both channels now, in order, awaiting each.

        ``percentage=None`` skips the attempt write (nothing recorded yet) but
        still asks for upstream confirmation. Best effort: a failing channel
        is logged and the next one still runs. Returns the upstream result,
        or None if it failed.
        """
        self.cancel(handle.attempt_id)
        if percentage is not None:
            try:
                await self._client.patch_attempt(handle.attempt_id, percentage)
            except SyncFailedError as exc:
                logger.warning("Final attempt write failed: %s", exc)
        try:
            return await self._send_upstream(handle, handle.attempt_id, percentage or 0)
        except SyncFailedError as exc:
            logger.warning("Final progress sync failed: %s", exc)
            return None

    async def drain(self) -> None:
        await self.local.drain()
        await self.upstream.drain()

    async def _send_local(self, handle: AttemptHandle, attempt_id: str, percentage: int) -> None:
        await self._client.patch_attempt(attempt_id, percentage)
        logger.debug("Persisted %s%% for attempt %s", percentage, attempt_id)

    async def _send_upstream(
        self, handle: AttemptHandle, attempt_id: str, percentage: int,
    ) -> SyncProgressResult:
        result = await self._client.sync_progress(attempt_id)
        if self.on_remote_result is not None:
            self.on_remote_result(handle, attempt_id, result)
        return result
