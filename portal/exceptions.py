"""Domain exception classes for the learner portal.

Raised by the sync core and the attempts client. Only
``LaunchUnavailableError`` ever reaches the learner; the rest are recovered
locally (dropped, logged or deferred) and mapped by the controller only where
the HTTP surface needs them.
"""


class LaunchUnavailableError(Exception):
    """Raised when the backend cannot produce a usable attempt handle."""

    def __init__(self, package_id: str = "", reason: str = ""):
        self.package_id = package_id
        self.reason = reason
        message = f"Launch unavailable for SCORM package: {package_id}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class MalformedEventError(Exception):
    """Raised when a runtime message cannot be decoded or classified."""


class SyncFailedError(Exception):
    """Raised when a remote attempt write or progress sync fails."""

    def __init__(self, attempt_id: str = "", detail: str = ""):
        self.attempt_id = attempt_id
        self.detail = detail
        super().__init__(f"Attempt sync failed for {attempt_id}: {detail}")


class StaleAttemptResponseError(Exception):
    """Raised when a remote response describes an attempt that is no longer active."""

    def __init__(self, attempt_id: str = ""):
        self.attempt_id = attempt_id
        super().__init__(f"Stale attempt response: {attempt_id}")


class OutlineIndexError(IndexError):
    """Raised when a navigation position falls outside the course outline."""

    def __init__(self, module_index: int, lesson_index: int):
        self.module_index = module_index
        self.lesson_index = lesson_index
        super().__init__(f"No lesson at module {module_index}, lesson {lesson_index}")


class SessionNotFoundError(Exception):
    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        super().__init__(f"Player session not found: {session_id}")
