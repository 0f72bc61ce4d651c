"""Player sessions: one per opened course, wiring resolver, listener,
engine, dispatcher and durability guard together.

Pure orchestration, no FastAPI imports.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

from portal.attempts.client import AttemptsClient
from portal.attempts.resolver import AttemptResolver
from portal.config import Settings
from portal.exceptions import LaunchUnavailableError, SessionNotFoundError
from portal.player.cache import DashboardCache
from portal.player.dispatcher import SyncDispatcher
from portal.player.engine import ReconciliationEngine
from portal.player.guard import Beacon, DurabilityGuard
from portal.player.jobs import LoopScheduler, Scheduler
from portal.player.listener import InboundMessage, OriginPolicy, ProgressListener
from portal.player.models import CourseOutline
from portal.player.outline import build_outline

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProgressNotice:
    course_id: str
    percentage: int
    completed_units: int


class PlayerSession:
    def __init__(
        self,
        session_id: str,
        outline: CourseOutline,
        *,
        client: AttemptsClient,
        listener: ProgressListener,
        beacon: Beacon,
        scheduler: Scheduler,
        cache: DashboardCache | None = None,
        local_delay: float = 1.0,
        upstream_delay: float = 5.0,
    ) -> None:
        self.session_id = session_id
        self.listener = listener
        self.dispatcher = SyncDispatcher(
            client, scheduler, local_delay=local_delay, upstream_delay=upstream_delay,
        )
        self.engine = ReconciliationEngine(
            outline,
            AttemptResolver(client),
            self.dispatcher,
            cache=cache,
            on_progress=self._record_progress,
            on_course_complete=self._record_completion,
        )
        self.guard = DurabilityGuard(beacon, client.base_url, client.access_token)
        self.last_progress: ProgressNotice | None = None
        self.completion_signals = 0
        self.closed = False

    def _record_progress(self, course_id: str, percentage: int, completed_units: int) -> None:
        self.last_progress = ProgressNotice(course_id, percentage, completed_units)

    def _record_completion(self, course_id: str) -> None:
        self.completion_signals += 1

    async def start(self) -> bool:
        """Launch the first lesson. A failure leaves a blocking error on the session."""
        try:
            return await self.engine.start() is not None
        except LaunchUnavailableError:
            return False

    async def relaunch(self) -> None:
        """Manual retry of the current lesson's launch. Raises LaunchUnavailableError."""
        await self.engine.open_lesson()

    async def receive(self, message: InboundMessage) -> bool:
        if self.closed:
            return False
        event = self.listener.receive(message, self.engine.handle)
        if event is None:
            return False
        return await self.engine.handle_event(event)

    async def end(self) -> bool:
        return await self.receive(InboundMessage.session_ended())

    def unload(self) -> bool:
        """Fire the durability beacon, then retire the handle."""
        queued = self.guard.on_unload(self.engine.handle, self.engine.signal)
        self.engine.discard_handle()
        return queued

    async def close(self) -> None:
        self.closed = True
        self.engine.discard_handle()
        self.dispatcher.cancel_all()
        await self.dispatcher.drain()

    def view(self) -> dict[str, Any]:
        engine = self.engine
        handle = engine.handle
        lesson = engine.current_lesson
        return {
            "session_id": self.session_id,
            "course_id": engine.course_id,
            "module_index": engine.navigation.module_index,
            "lesson_index": engine.navigation.lesson_index,
            "lesson_id": lesson.lesson_id if lesson else None,
            "attempt_id": handle.attempt_id if handle else None,
            "launch_url": handle.launch_url if handle else None,
            "percentage": engine.signal.percentage,
            "lesson_completed": engine.signal.completed,
            "course_percentage": engine.course_percentage(),
            "completed_units": len(engine.navigation.completed_lessons),
            "course_completed": engine.course_completed,
            "error": engine.error,
        }


class SessionRegistry:
    """In-memory player sessions, keyed by session id."""

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        beacon: Beacon,
        cache: DashboardCache | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._settings = settings
        self._http = http
        self._beacon = beacon
        self._cache = cache
        self._scheduler = scheduler or LoopScheduler()
        self._listener = ProgressListener(
            OriginPolicy(settings.scorm_origins_list, settings.scorm_origin_domain),
        )
        self._sessions: dict[str, PlayerSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self, course: dict[str, Any], access_token: str | None) -> PlayerSession:
        outline = build_outline(course)
        if self._cache is not None:
            await self._cache.warm(outline.course_id)
        session = PlayerSession(
            uuid.uuid4().hex,
            outline,
            client=AttemptsClient(self._http, self._settings.backend_base_url, access_token),
            listener=self._listener,
            beacon=self._beacon,
            scheduler=self._scheduler,
            cache=self._cache,
            local_delay=self._settings.local_sync_delay_secs,
            upstream_delay=self._settings.upstream_sync_delay_secs,
        )
        self._sessions[session.session_id] = session
        logger.info("Player session %s opened for course %s", session.session_id, outline.course_id)
        await session.start()
        return session

    def get(self, session_id: str) -> PlayerSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        await session.close()
        logger.info("Player session %s closed", session_id)

    async def unload(self, session_id: str) -> bool:
        """Queue the unload beacon, then close the session.

        A closed tab never sends the DELETE, so unload is the session's end.
        Beacon tasks belong to the application and survive the close.
        """
        queued = self.get(session_id).unload()
        await self.close(session_id)
        return queued

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
