"""Attempt identity resolver: lesson → fresh ``AttemptHandle``.

Never caches. Every lesson change asks the backend again because each
content unit may be a distinct attempt.
"""

from __future__ import annotations

import logging

from portal.attempts.client import AttemptsClient
from portal.exceptions import LaunchUnavailableError
from portal.player.models import AttemptHandle, LessonOutline

logger = logging.getLogger(__name__)


class AttemptResolver:
    def __init__(self, client: AttemptsClient) -> None:
        self._client = client

    async def resolve(self, lesson: LessonOutline, serial: int) -> AttemptHandle:
        if not lesson.package_id:
            logger.error("Lesson %s has no SCORM package configured", lesson.lesson_id)
            raise LaunchUnavailableError("", "no SCORM package configured for this lesson")

        try:
            launch = await self._client.get_launch(lesson.package_id)
        except LaunchUnavailableError as exc:
            logger.error("Launch failed for package %s: %s", lesson.package_id, exc.reason)
            raise

        return AttemptHandle(
            attempt_id=launch.scorm_attempt_id,
            launch_url=launch.launch_url,
            package_id=lesson.package_id,
            lesson_id=lesson.lesson_id,
            serial=serial,
        )
