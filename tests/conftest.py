import json
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio

from portal.attempts.client import AttemptsClient
from portal.attempts.resolver import AttemptResolver
from portal.player.cache import DashboardCache
from portal.player.dispatcher import SyncDispatcher
from portal.player.engine import ReconciliationEngine
from portal.player.models import CourseOutline, LessonOutline, ModuleOutline

BACKEND_URL = "http://backend.test/api/v1"
SCORM_ORIGIN = "https://cloud.scorm.com"


# ---------------------------------------------------------------------------
# Manual clock
# ---------------------------------------------------------------------------


class _Timer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose time only moves when a test calls ``advance``."""

    def __init__(self) -> None:
        self._now = 0.0
        self._timers: list[_Timer] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _Timer:
        timer = _Timer(self._now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self._timers.remove(timer)
            self._now = timer.due
            timer.callback()
        self._now = target
        self._timers = [t for t in self._timers if not t.cancelled]


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------


class FakeBackend:
    """Routes the three attempt endpoints and records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.launch_counter = 0
        self.broken_packages: set[str] = set()
        self.incomplete_packages: set[str] = set()
        self.patch_status = 200
        self.sync_status = 200
        self.sync_percentages: dict[str, int] = {}
        self.rotations: dict[str, str] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.removeprefix("/api/v1/").split("/")

        if request.method == "GET" and parts[0] == "scorm-packages" and parts[-1] == "launch":
            package_id = parts[1]
            if package_id in self.broken_packages:
                return httpx.Response(500, json={"error": "boom"})
            self.launch_counter += 1
            body = {
                "launchUrl": f"{SCORM_ORIGIN}/launch/{package_id}",
                "scormAttemptId": f"att-{package_id}-{self.launch_counter}",
            }
            if package_id in self.incomplete_packages:
                del body["scormAttemptId"]
            return httpx.Response(200, json=body)

        if request.method == "PATCH" and parts[0] == "attempts" and len(parts) == 2:
            return httpx.Response(self.patch_status, json={"ok": self.patch_status < 400})

        if request.method == "PATCH" and parts[0] == "attempts" and parts[-1] == "sync-progress":
            attempt_id = parts[1]
            if self.sync_status >= 400:
                return httpx.Response(self.sync_status, json={"error": "sync failed"})
            return httpx.Response(200, json={"data": {
                "attemptId": self.rotations.get(attempt_id, attempt_id),
                "scormPackageId": "pkg",
                "completionPercentage": self.sync_percentages.get(attempt_id, 0),
                "status": "IN_PROGRESS",
            }})

        return httpx.Response(404)

    def patches(self) -> list[tuple[str, dict]]:
        return [
            (r.url.path.rsplit("/", 1)[-1], json.loads(r.content))
            for r in self.requests
            if r.method == "PATCH" and not r.url.path.endswith("/sync-progress")
        ]

    def syncs(self) -> list[str]:
        return [
            r.url.path.split("/")[-2]
            for r in self.requests
            if r.method == "PATCH" and r.url.path.endswith("/sync-progress")
        ]

    def launches(self) -> list[str]:
        return [r.url.path.split("/")[-2] for r in self.requests if r.method == "GET"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_outline(modules: int = 2, lessons: int = 2, course_id: str = "course-1") -> CourseOutline:
    return CourseOutline(
        course_id=course_id,
        title="Workplace Safety",
        modules=tuple(
            ModuleOutline(
                module_id=f"m{m}",
                title=f"Module {m}",
                lessons=tuple(
                    LessonOutline(
                        lesson_id=f"l{m}{li}",
                        title=f"Lesson {m}.{li}",
                        package_id=f"pkg{m}{li}",
                    )
                    for li in range(lessons)
                ),
            )
            for m in range(modules)
        ),
    )


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def http(backend: FakeBackend) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend.handler)) as client:
        yield client


@pytest.fixture
def attempts_client(http: httpx.AsyncClient) -> AttemptsClient:
    return AttemptsClient(http, BACKEND_URL, "token-123")


class EngineFactory:
    def __init__(self, client: AttemptsClient, scheduler: ManualScheduler) -> None:
        self.client = client
        self.scheduler = scheduler
        self.progress_calls: list[tuple[str, int, int]] = []
        self.completions: list[str] = []
        self.cache = DashboardCache()

    def __call__(self, outline: CourseOutline | None = None) -> ReconciliationEngine:
        dispatcher = SyncDispatcher(self.client, self.scheduler, local_delay=1.0, upstream_delay=5.0)
        return ReconciliationEngine(
            outline or make_outline(),
            AttemptResolver(self.client),
            dispatcher,
            cache=self.cache,
            on_progress=lambda *args: self.progress_calls.append(args),
            on_course_complete=self.completions.append,
        )


@pytest.fixture
def make_engine(attempts_client: AttemptsClient, scheduler: ManualScheduler) -> EngineFactory:
    return EngineFactory(attempts_client, scheduler)
