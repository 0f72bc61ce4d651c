"""Progress event listener.

Filters relayed ``postMessage`` traffic from the embedded SCORM runtime and
normalizes it into ``ProgressEvent`` values for the reconciliation engine.
Nothing raised while decoding ever leaves ``receive``: a malformed message
must not take the player down.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from portal.exceptions import MalformedEventError
from portal.player.models import (
    AttemptHandle,
    ProgressEvent,
    SignalKind,
    normalize_percentage,
)

logger = logging.getLogger(__name__)

MESSAGE_KINDS: dict[str, SignalKind] = {
    "ScoProgress": SignalKind.PROGRESS,
    "CourseProgress": SignalKind.PROGRESS,
    "ScoCompleted": SignalKind.COMPLETION,
    "CourseCompleted": SignalKind.COMPLETION,
    "CoursePassed": SignalKind.COMPLETION,
    "PlayerExit": SignalKind.SESSION_ENDED,
    "SessionEnded": SignalKind.SESSION_ENDED,
}


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A relayed message. ``internal`` marks in-process signals (no origin check)."""

    data: Any
    origin: str | None = None
    internal: bool = False

    @classmethod
    def session_ended(cls) -> InboundMessage:
        return cls(data={"messageType": "SessionEnded"}, internal=True)


class RuntimeMessage(BaseModel):
    """Documented field set of a runtime message; everything else is ignored."""

    model_config = ConfigDict(extra="ignore")

    message_type: str = Field(alias="messageType", min_length=1)
    progress: float | None = None


class OriginPolicy:
    """Exact origins plus, optionally, every https host under one domain."""

    def __init__(self, origins: Iterable[str] = (), domain: str = "") -> None:
        self._origins = {o.rstrip("/").lower() for o in origins if o}
        self._domain = domain.strip().lstrip(".").lower()

    def allows(self, origin: str | None) -> bool:
        if not origin:
            return False
        origin = origin.rstrip("/").lower()
        if origin in self._origins:
            return True
        if not self._domain:
            return False
        parts = urlsplit(origin)
        host = parts.hostname or ""
        if parts.scheme != "https" or not host:
            return False
        return host == self._domain or host.endswith("." + self._domain)


def decode(data: Any) -> RuntimeMessage:
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise MalformedEventError("payload is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedEventError(f"unsupported payload type {type(data).__name__}")
    try:
        return RuntimeMessage.model_validate(data)
    except ValidationError as exc:
        raise MalformedEventError("payload does not match the runtime message shape") from exc


def classify(message: RuntimeMessage, handle: AttemptHandle) -> ProgressEvent:
    kind = MESSAGE_KINDS.get(message.message_type)
    if kind is None:
        raise MalformedEventError(f"unknown message type {message.message_type!r}")
    if kind is SignalKind.COMPLETION:
        return ProgressEvent(kind=kind, handle=handle, percentage=100, completed=True)
    if kind is SignalKind.SESSION_ENDED:
        return ProgressEvent(kind=kind, handle=handle)
    percentage = normalize_percentage((message.progress or 0) * 100)
    return ProgressEvent(
        kind=kind,
        handle=handle,
        percentage=percentage,
        completed=percentage >= 100,
    )


class ProgressListener:
    def __init__(self, policy: OriginPolicy) -> None:
        self._policy = policy

    def receive(
        self, message: InboundMessage, active: AttemptHandle | None,
    ) -> ProgressEvent | None:
        """Gate, decode and classify one message. Returns None when dropped."""
        if not message.internal and not self._policy.allows(message.origin):
            logger.debug("Dropped message from untrusted origin %r", message.origin)
            return None
        if active is None:
            logger.debug("Dropped message: no active attempt")
            return None
        if message.data is None:
            return None
        try:
            return classify(decode(message.data), active)
        except MalformedEventError as exc:
            logger.debug("Dropped malformed runtime message: %s", exc)
            return None
