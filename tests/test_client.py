import httpx
import pytest

from conftest import BACKEND_URL, FakeBackend
from portal.attempts.client import AttemptsClient, attempt_patch_body, auth_headers
from portal.attempts.resolver import AttemptResolver
from portal.attempts.schemas import SyncProgressResult
from portal.exceptions import LaunchUnavailableError, SyncFailedError
from portal.player.models import LessonOutline


def _client(handler) -> AttemptsClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AttemptsClient(http, BACKEND_URL, "token-123")


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolver_builds_handle(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    lesson = LessonOutline("l00", "Intro", "pkg00")
    handle = await AttemptResolver(attempts_client).resolve(lesson, 7)

    assert handle.attempt_id == "att-pkg00-1"
    assert handle.launch_url.endswith("/launch/pkg00")
    assert handle.key == ("l00", "pkg00", 7)
    assert backend.launches() == ["pkg00"]


@pytest.mark.asyncio
async def test_resolver_never_caches(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    resolver = AttemptResolver(attempts_client)
    lesson = LessonOutline("l00", "Intro", "pkg00")
    first = await resolver.resolve(lesson, 1)
    second = await resolver.resolve(lesson, 2)
    assert first.attempt_id != second.attempt_id
    assert len(backend.launches()) == 2


@pytest.mark.asyncio
async def test_lesson_without_package(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    with pytest.raises(LaunchUnavailableError):
        await AttemptResolver(attempts_client).resolve(LessonOutline("l00", "Intro", None), 1)
    assert backend.requests == []


@pytest.mark.asyncio
async def test_launch_http_error(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    backend.broken_packages.add("pkg00")
    with pytest.raises(LaunchUnavailableError) as exc_info:
        await attempts_client.get_launch("pkg00")
    assert exc_info.value.reason == "HTTP 500"


@pytest.mark.asyncio
async def test_launch_missing_attempt_id(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    backend.incomplete_packages.add("pkg00")
    with pytest.raises(LaunchUnavailableError):
        await attempts_client.get_launch("pkg00")


@pytest.mark.asyncio
async def test_launch_numeric_attempt_id() -> None:
    client = _client(lambda r: httpx.Response(200, json={"launchUrl": "https://x", "scormAttemptId": 42}))
    launch = await client.get_launch("pkg")
    assert launch.scorm_attempt_id == "42"


@pytest.mark.asyncio
async def test_launch_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LaunchUnavailableError):
        await _client(handler).get_launch("pkg")


# ---------------------------------------------------------------------------
# Attempt writes
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("percentage, status", [
    (1, "IN_PROGRESS"),
    (99, "IN_PROGRESS"),
    (100, "COMPLETED"),
])
def test_patch_body(percentage: int, status: str) -> None:
    assert attempt_patch_body(percentage) == {"completionPercentage": percentage, "status": status}


def test_auth_headers_without_token() -> None:
    assert auth_headers(None) == {}
    assert auth_headers("abc") == {"Authorization": "Bearer abc"}


@pytest.mark.asyncio
async def test_patch_failure_raises(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    backend.patch_status = 422
    with pytest.raises(SyncFailedError) as exc_info:
        await attempts_client.patch_attempt("att-1", 10)
    assert exc_info.value.attempt_id == "att-1"


@pytest.mark.asyncio
async def test_sync_reads_enveloped_result(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    backend.sync_percentages["att-1"] = 64
    result = await attempts_client.sync_progress("att-1")
    assert result.attempt_id == "att-1"
    assert result.completion_percentage == 64
    assert result.status == "IN_PROGRESS"


@pytest.mark.asyncio
async def test_sync_reads_bare_result() -> None:
    client = _client(lambda r: httpx.Response(200, json={
        "attemptId": 9, "completionPercentage": 120.4, "status": "COMPLETED", "extra": True,
    }))
    result = await client.sync_progress("att-1")
    assert result.attempt_id == "9"
    assert result.completion_percentage == 100


@pytest.mark.asyncio
async def test_sync_rejects_non_json() -> None:
    client = _client(lambda r: httpx.Response(200, text="<html>"))
    with pytest.raises(SyncFailedError):
        await client.sync_progress("att-1")


@pytest.mark.asyncio
async def test_sync_http_error(attempts_client: AttemptsClient, backend: FakeBackend) -> None:
    backend.sync_status = 500
    with pytest.raises(SyncFailedError):
        await attempts_client.sync_progress("att-1")


@pytest.mark.parametrize("raw", [b"1e400", b"Infinity", b"-Infinity", b"NaN"])
@pytest.mark.asyncio
async def test_sync_non_finite_percentage_counts_as_zero(raw: bytes) -> None:
    body = b'{"data": {"attemptId": "att-1", "completionPercentage": ' + raw + b"}}"
    client = _client(lambda r: httpx.Response(
        200, content=body, headers={"Content-Type": "application/json"},
    ))
    result = await client.sync_progress("att-1")
    assert result.completion_percentage == 0


def test_sync_result_schema_with_infinite_percentage() -> None:
    result = SyncProgressResult.model_validate({"completionPercentage": float("inf")})
    assert result.completion_percentage == 0
