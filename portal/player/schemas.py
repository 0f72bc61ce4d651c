"""Player HTTP schemas (Pydantic V2)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portal.player.models import CourseStatus


def _coerce_id(value: object) -> object:
    # course service ids may be numeric
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class LessonPayload(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    title: str = ""
    scorm_package_id: str | None = Field(default=None, alias="scormPackageId")
    is_completed: bool = Field(default=False, alias="isCompleted")

    @field_validator("id", "scorm_package_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: object) -> object:
        return _coerce_id(value)


class ModulePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str = ""
    lessons: list[LessonPayload] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: object) -> object:
        return _coerce_id(value)


class OpenSessionRequest(BaseModel):
    """Course as returned by the backend course endpoint (modules → lessons)."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    title: str = ""
    modules: list[ModulePayload] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: object) -> object:
        return _coerce_id(value)


class RuntimeMessageRequest(BaseModel):
    """A ``postMessage`` relayed by the page hosting the SCORM frame."""

    origin: str = Field(description="event.origin as seen by the browser.")
    data: Any = Field(default=None, description="event.data, object or JSON string.")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    session_id: str
    course_id: str
    module_index: int
    lesson_index: int
    lesson_id: str | None = None
    attempt_id: str | None = None
    launch_url: str | None = None
    percentage: int
    lesson_completed: bool
    course_percentage: int
    completed_units: int
    course_completed: bool
    error: str | None = Field(
        default=None,
        description="Blocking error for the current lesson (launch unavailable).",
    )


class MessageAcceptedResponse(BaseModel):
    accepted: bool


class DashboardRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    progress: int
    status: CourseStatus
    completed_units: int
