"""Wire schemas for the backend attempt endpoints (Pydantic V2).

The backend speaks camelCase; fields are declared snake_case with aliases.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portal.player.models import CourseStatus, normalize_percentage


class LaunchResponse(BaseModel):
    """``GET /scorm-packages/{packageId}/launch``. Both fields are mandatory."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    launch_url: str = Field(alias="launchUrl", min_length=1)
    scorm_attempt_id: str = Field(alias="scormAttemptId", min_length=1)

    @field_validator("scorm_attempt_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        # some deployments return numeric ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class AttemptPatchRequest(BaseModel):
    """Body of ``PATCH /attempts/{attemptId}``; also the unload beacon body."""

    model_config = ConfigDict(populate_by_name=True)

    completion_percentage: int = Field(alias="completionPercentage", ge=0, le=100)
    status: CourseStatus

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SyncProgressResult(BaseModel):
    """Payload of ``PATCH /attempts/{attemptId}/sync-progress``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    attempt_id: str | None = Field(default=None, alias="attemptId")
    scorm_package_id: str | None = Field(default=None, alias="scormPackageId")
    completion_percentage: int = Field(default=0, alias="completionPercentage")
    status: str | None = None

    @field_validator("attempt_id", "scorm_package_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("completion_percentage", mode="before")
    @classmethod
    def _normalize(cls, value: object) -> int:
        return normalize_percentage(value)


class SyncProgressEnvelope(BaseModel):
    data: SyncProgressResult
