"""Coalescing (debounced) remote writes.

A ``CoalescingJob`` is one sync destination. It keeps at most one
``PendingSyncJob`` per attempt: scheduling again before the job is due
replaces the payload and restarts the delay. Time comes from an injected
``Scheduler`` so tests can drive it without real timers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from portal.exceptions import SyncFailedError
from portal.player.models import AttemptHandle

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass(slots=True)
class PendingSyncJob:
    handle: AttemptHandle
    target_attempt_id: str
    payload_percentage: int
    due_at: float
    timer: TimerHandle | None = None


SyncAction = Callable[[AttemptHandle, str, int], Awaitable[Any]]


class CoalescingJob:
    def __init__(
        self,
        name: str,
        delay: float,
        action: SyncAction,
        scheduler: Scheduler,
    ) -> None:
        self.name = name
        self.delay = delay
        self._action = action
        self._scheduler = scheduler
        self._pending: dict[str, PendingSyncJob] = {}
        self._inflight: set[asyncio.Task] = set()

    def pending(self, attempt_id: str) -> PendingSyncJob | None:
        return self._pending.get(attempt_id)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def schedule(self, handle: AttemptHandle, percentage: int) -> PendingSyncJob:
        attempt_id = handle.attempt_id
        existing = self._pending.get(attempt_id)
        if existing is not None and existing.timer is not None:
            existing.timer.cancel()

        job = PendingSyncJob(
            handle=handle,
            target_attempt_id=attempt_id,
            payload_percentage=percentage,
            due_at=self._scheduler.now() + self.delay,
        )
        job.timer = self._scheduler.call_later(self.delay, lambda: self._fire(attempt_id, job))
        self._pending[attempt_id] = job
        return job

    def cancel(self, attempt_id: str) -> PendingSyncJob | None:
        job = self._pending.pop(attempt_id, None)
        if job is not None and job.timer is not None:
            job.timer.cancel()
        return job

    def retarget(self, old_attempt_id: str, handle: AttemptHandle) -> None:
        """Move a pending job to a rotated attempt id, keeping its due time."""
        job = self.cancel(old_attempt_id)
        if job is None:
            return
        new_id = handle.attempt_id
        delay = max(0.0, job.due_at - self._scheduler.now())
        moved = PendingSyncJob(
            handle=handle,
            target_attempt_id=new_id,
            payload_percentage=job.payload_percentage,
            due_at=job.due_at,
        )
        moved.timer = self._scheduler.call_later(delay, lambda: self._fire(new_id, moved))
        self._pending[new_id] = moved

    def cancel_all(self) -> None:
        for attempt_id in list(self._pending):
            self.cancel(attempt_id)

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _fire(self, attempt_id: str, job: PendingSyncJob) -> None:
        if self._pending.get(attempt_id) is not job:
            return  # replaced or cancelled
        del self._pending[attempt_id]
        task = asyncio.ensure_future(self._run(job))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self, job: PendingSyncJob) -> None:
        try:
            await self._action(job.handle, job.target_attempt_id, job.payload_percentage)
        except SyncFailedError as exc:
            logger.warning("%s sync failed: %s", self.name, exc)
        except Exception:
            logger.exception("%s sync crashed for attempt %s", self.name, job.target_attempt_id)
