"""Map a backend course payload onto the player's ``CourseOutline``.

Tolerates missing modules/lessons and the backend's historical
``scormPackegeId`` spelling.
"""

from __future__ import annotations

import logging
from typing import Any

from portal.player.models import CourseOutline, LessonOutline, ModuleOutline

logger = logging.getLogger(__name__)


def _package_id(lesson: dict[str, Any]) -> str | None:
    raw = lesson.get("scormPackageId")
    if raw is None:
        raw = lesson.get("scormPackegeId")
    if raw is None or raw == "":
        return None
    return str(raw)


def build_outline(course: dict[str, Any]) -> CourseOutline:
    course_id = str(course.get("id") or "")
    modules_raw = course.get("modules")
    if not isinstance(modules_raw, list):
        logger.warning("Course %s has no modules; full course data required", course_id)
        modules_raw = []

    modules: list[ModuleOutline] = []
    for m_index, module in enumerate(modules_raw):
        if not isinstance(module, dict):
            continue
        lessons_raw = module.get("lessons") or []
        lessons = tuple(
            LessonOutline(
                lesson_id=str(lesson.get("id") or f"{m_index}.{l_index}"),
                title=str(lesson.get("title") or ""),
                package_id=_package_id(lesson),
                is_completed=bool(lesson.get("isCompleted", False)),
            )
            for l_index, lesson in enumerate(lessons_raw)
            if isinstance(lesson, dict)
        )
        modules.append(ModuleOutline(
            module_id=str(module.get("id") or m_index),
            title=str(module.get("title") or ""),
            lessons=lessons,
        ))

    return CourseOutline(
        course_id=course_id,
        title=str(course.get("title") or ""),
        modules=tuple(modules),
    )
