"""Core data model of the SCORM attempt sync.

Plain dataclasses, no I/O. The reconciliation engine is the only writer of
``ProgressSignal`` and ``NavigationState``.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field, replace

from portal.exceptions import OutlineIndexError


class CourseStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class SignalKind(str, enum.Enum):
    PROGRESS = "progress-update"
    COMPLETION = "completion"
    SESSION_ENDED = "session-ended"


def normalize_percentage(value: object) -> int:
    """Round and clamp to 0..100. Anything non-numeric or non-finite counts as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return min(100, max(0, round(value)))


def derive_status(percentage: int, backend_status: str | None = None) -> CourseStatus:
    """Percentage decides; a backend status string only fills in for 0%."""
    if percentage >= 100:
        return CourseStatus.COMPLETED
    if percentage > 0:
        return CourseStatus.IN_PROGRESS
    if backend_status:
        try:
            return CourseStatus(backend_status.upper())
        except ValueError:
            pass
    return CourseStatus.NOT_STARTED


# ---------------------------------------------------------------------------
# Attempt identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AttemptHandle:
    """One launch of one content package for one lesson.

    Identity is ``(lesson_id, package_id, serial)``: a package reused by two
    lessons still yields two distinct handles, even when the backend hands
    back the same attempt id for both.
    """

    attempt_id: str
    launch_url: str
    package_id: str
    lesson_id: str
    serial: int

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.lesson_id, self.package_id, self.serial)

    def same_launch(self, other: AttemptHandle | None) -> bool:
        return other is not None and self.key == other.key

    def rotated(self, attempt_id: str) -> AttemptHandle:
        return replace(self, attempt_id=attempt_id)


@dataclass(slots=True)
class ProgressSignal:
    percentage: int = 0
    completed: bool = False
    touched: bool = False

    @property
    def status(self) -> CourseStatus:
        if self.completed:
            return CourseStatus.COMPLETED
        return derive_status(self.percentage)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Normalized output of the listener, stamped with the handle active at receipt."""

    kind: SignalKind
    handle: AttemptHandle
    percentage: int = 0
    completed: bool = False


# ---------------------------------------------------------------------------
# Course outline and navigation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LessonOutline:
    lesson_id: str
    title: str
    package_id: str | None
    is_completed: bool = False


@dataclass(frozen=True, slots=True)
class ModuleOutline:
    module_id: str
    title: str
    lessons: tuple[LessonOutline, ...] = ()


@dataclass(frozen=True, slots=True)
class CourseOutline:
    course_id: str
    title: str
    modules: tuple[ModuleOutline, ...] = ()

    @property
    def total_lessons(self) -> int:
        return sum(len(m.lessons) for m in self.modules)

    def lesson_at(self, module_index: int, lesson_index: int) -> LessonOutline:
        if not 0 <= module_index < len(self.modules):
            raise OutlineIndexError(module_index, lesson_index)
        lessons = self.modules[module_index].lessons
        if not 0 <= lesson_index < len(lessons):
            raise OutlineIndexError(module_index, lesson_index)
        return lessons[lesson_index]

    def first_position(self) -> tuple[int, int] | None:
        for m, module in enumerate(self.modules):
            if module.lessons:
                return (m, 0)
        return None

    def next_position(self, module_index: int, lesson_index: int) -> tuple[int, int] | None:
        """Position after the given lesson, skipping empty modules; None at the end."""
        self.lesson_at(module_index, lesson_index)
        if lesson_index + 1 < len(self.modules[module_index].lessons):
            return (module_index, lesson_index + 1)
        for m in range(module_index + 1, len(self.modules)):
            if self.modules[m].lessons:
                return (m, 0)
        return None


@dataclass(slots=True)
class NavigationState:
    course_id: str
    module_index: int = 0
    lesson_index: int = 0
    completed_lessons: set[tuple[int, int]] = field(default_factory=set)

    @property
    def position(self) -> tuple[int, int]:
        return (self.module_index, self.lesson_index)

    def move_to(self, position: tuple[int, int]) -> None:
        self.module_index, self.lesson_index = position


@dataclass(slots=True)
class DashboardRecord:
    """Progress fields of one course entry in the dashboard cache."""

    course_id: str
    progress: int
    status: CourseStatus
    completed_units: int
