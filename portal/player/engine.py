"""Progress reconciliation engine.

Single mutable owner of the active ``AttemptHandle``, the lesson's
``ProgressSignal`` and the course ``NavigationState``. Everything else gets
the handle by parameter and is checked against it before any mutation.

Lesson states::

    NotStarted (0, False) → InProgress (1..99, False) → Complete (100, True)

Transitions only move forward. A progress value at or below the last applied
one is ignored outright; a completion event forces 100.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from portal.attempts.resolver import AttemptResolver
from portal.attempts.schemas import SyncProgressResult
from portal.exceptions import LaunchUnavailableError, StaleAttemptResponseError
from portal.player.cache import DashboardCache
from portal.player.dispatcher import SyncDispatcher
from portal.player.models import (
    AttemptHandle,
    CourseOutline,
    DashboardRecord,
    LessonOutline,
    NavigationState,
    ProgressEvent,
    ProgressSignal,
    SignalKind,
    derive_status,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]
CompletionCallback = Callable[[str], None]


class ReconciliationEngine:
    def __init__(
        self,
        outline: CourseOutline,
        resolver: AttemptResolver,
        dispatcher: SyncDispatcher,
        *,
        cache: DashboardCache | None = None,
        on_progress: ProgressCallback | None = None,
        on_course_complete: CompletionCallback | None = None,
    ) -> None:
        self.outline = outline
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.cache = cache
        self.on_progress = on_progress
        self.on_course_complete = on_course_complete
        dispatcher.on_remote_result = self.accept_remote

        self.navigation = NavigationState(course_id=outline.course_id)
        for m, module in enumerate(outline.modules):
            for li, lesson in enumerate(module.lessons):
                if lesson.is_completed:
                    self.navigation.completed_lessons.add((m, li))

        self.signal = ProgressSignal()
        self.applied: list[int] = []
        self.handle: AttemptHandle | None = None
        self.error: str | None = None
        self.course_completed = False
        self._serial = 0
        self._finishing = False

    # -- Navigation / launch --

    @property
    def course_id(self) -> str:
        return self.outline.course_id

    @property
    def current_lesson(self) -> LessonOutline | None:
        if self.outline.total_lessons == 0:
            return None
        return self.outline.lesson_at(*self.navigation.position)

    async def start(self) -> AttemptHandle | None:
        """Reset to the first lesson and launch it."""
        first = self.outline.first_position()
        if first is None:
            self.error = "No SCORM package configured for this course."
            raise LaunchUnavailableError("", "course has no lessons")
        self.navigation.move_to(first)
        return await self.open_lesson()

    def discard_handle(self) -> None:
        """Drop the active handle and cancel its pending sync jobs."""
        if self.handle is not None:
            self.dispatcher.cancel(self.handle.attempt_id)
            logger.debug("Discarded attempt %s", self.handle.attempt_id)
        self.handle = None

    async def open_lesson(self) -> AttemptHandle | None:
        """Launch the lesson at the current navigation position.

        Returns None when a newer launch superseded this one while the
        backend call was in flight.
        """
        self.discard_handle()
        self.signal = ProgressSignal()
        self.applied = []
        self.error = None

        lesson = self.outline.lesson_at(*self.navigation.position)
        self._serial += 1
        serial = self._serial
        try:
            handle = await self.resolver.resolve(lesson, serial)
        except LaunchUnavailableError:
            if serial == self._serial:
                self.error = "Failed to load SCORM package"
            raise

        if serial != self._serial or self.course_completed:
            logger.debug("Launch %s for lesson %s superseded", serial, lesson.lesson_id)
            return None
        self.handle = handle
        logger.info(
            "Opened lesson %s (module %s, lesson %s) as attempt %s",
            lesson.lesson_id, *self.navigation.position, handle.attempt_id,
        )
        return handle

    # -- Inbound events --

    async def handle_event(self, event: ProgressEvent) -> bool:
        """Apply one listener event. Returns True when it changed state or ended a session."""
        if not event.handle.same_launch(self.handle):
            logger.debug("Ignored event for inactive attempt %s", event.handle.attempt_id)
            return False

        if event.kind is SignalKind.SESSION_ENDED:
            await self.end_session()
            return True

        if event.kind is SignalKind.COMPLETION or event.completed:
            accepted = self._apply(100, completed=True)
        else:
            accepted = self._apply(event.percentage, completed=False)

        if accepted and self.signal.completed:
            await self._finish_lesson()
        return accepted

    def _apply(self, percentage: int, *, completed: bool, schedule: bool = True) -> bool:
        signal = self.signal
        if completed:
            if signal.completed:
                return False
            percentage = 100
        elif percentage <= signal.percentage:
            return False

        signal.percentage = percentage
        signal.completed = completed or percentage >= 100
        signal.touched = True
        self.applied.append(percentage)
        if signal.completed:
            self.navigation.completed_lessons.add(self.navigation.position)

        self._publish()
        if schedule and self.handle is not None:
            self.dispatcher.schedule(self.handle, percentage)
        return True

    # -- Outward notifications --

    def course_percentage(self, lesson_percentage: int | None = None) -> int:
        total = self.outline.total_lessons
        current = self.signal.percentage if lesson_percentage is None else lesson_percentage
        if total == 0:
            return current
        done = len(self.navigation.completed_lessons)
        if self.navigation.position in self.navigation.completed_lessons:
            current = 0
        return min(100, (done * 100 + current) // total)

    def _publish(self, lesson_percentage: int | None = None, backend_status: str | None = None,
                 notify: bool = True) -> None:
        percentage = self.course_percentage(lesson_percentage)
        completed_units = len(self.navigation.completed_lessons)
        if self.cache is not None:
            self.cache.replace(DashboardRecord(
                course_id=self.course_id,
                progress=percentage,
                status=derive_status(percentage, backend_status),
                completed_units=completed_units,
            ))
        if notify and self.on_progress is not None:
            self.on_progress(self.course_id, percentage, completed_units)

    # -- Completion and session end --

    async def _finish_lesson(self) -> None:
        handle = self.handle
        if handle is None or self._finishing:
            return
        self._finishing = True
        try:
            await self.dispatcher.flush(handle, 100)
        finally:
            self._finishing = False
        if not handle.same_launch(self.handle):
            return  # unloaded or closed while flushing
        await self._advance()

    async def end_session(self) -> None:
        """Flush both destinations, then advance only if the lesson is complete."""
        handle = self.handle
        if handle is None or self._finishing:
            return
        percentage = self.signal.percentage if self.signal.touched else None
        self._finishing = True
        try:
            result = await self.dispatcher.flush(handle, percentage)
        finally:
            self._finishing = False
        if not handle.same_launch(self.handle):
            return

        if (
            not self.signal.completed
            and result is not None
            and result.completion_percentage >= 100
        ):
            self._apply(100, completed=True, schedule=False)
        if self.signal.completed:
            await self._advance()

    async def _advance(self) -> None:
        following = self.outline.next_position(*self.navigation.position)
        if following is None:
            self.discard_handle()
            if not self.course_completed:
                self.course_completed = True
                logger.info("Course %s completed", self.course_id)
                if self.on_course_complete is not None:
                    self.on_course_complete(self.course_id)
            return

        self.navigation.move_to(following)
        logger.info("Advanced course %s to module %s, lesson %s", self.course_id, *following)
        try:
            await self.open_lesson()
        except LaunchUnavailableError:
            pass  # blocking error state recorded on self.error

    # -- Remote results --

    def _check_active(self, handle: AttemptHandle, requested_attempt_id: str) -> AttemptHandle:
        active = self.handle
        if active is None or not handle.same_launch(active):
            raise StaleAttemptResponseError(requested_attempt_id)
        # issued before a rotation this engine already adopted
        if requested_attempt_id != active.attempt_id:
            raise StaleAttemptResponseError(requested_attempt_id)
        return active

    def accept_remote(
        self, handle: AttemptHandle, requested_attempt_id: str, result: SyncProgressResult,
    ) -> None:
        """Adopt a rotated attempt id and refresh the dashboard record.

        ``requested_attempt_id`` is the id the sync request was sent for; a
        response to any id other than the active one is discarded.
        """
        try:
            active = self._check_active(handle, requested_attempt_id)
        except StaleAttemptResponseError as exc:
            logger.debug("Discarded remote result: %s", exc)
            return

        if result.attempt_id and result.attempt_id != active.attempt_id:
            rotated = active.rotated(result.attempt_id)
            self.handle = rotated
            self.dispatcher.retarget(active.attempt_id, rotated)
            logger.info("Attempt rotated %s -> %s", active.attempt_id, rotated.attempt_id)

        merged = max(self.signal.percentage, result.completion_percentage)
        if self.signal.completed:
            merged = 100
        self._publish(lesson_percentage=merged, backend_status=result.status, notify=False)
