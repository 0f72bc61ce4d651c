import pytest

from conftest import FakeBackend, ManualScheduler
from portal.attempts.client import AttemptsClient
from portal.attempts.schemas import SyncProgressResult
from portal.player.dispatcher import SyncDispatcher
from portal.player.models import AttemptHandle

HANDLE = AttemptHandle("att-1", "https://cloud.scorm.com/x", "pkg", "l00", 1)


@pytest.fixture
def dispatcher(attempts_client: AttemptsClient, scheduler: ManualScheduler) -> SyncDispatcher:
    return SyncDispatcher(attempts_client, scheduler, local_delay=1.0, upstream_delay=5.0)


@pytest.mark.asyncio
async def test_channels_fire_on_their_own_delays(
    dispatcher: SyncDispatcher, scheduler: ManualScheduler, backend: FakeBackend,
) -> None:
    dispatcher.schedule(HANDLE, 10)
    scheduler.advance(0.5)
    dispatcher.schedule(HANDLE, 40)

    scheduler.advance(1.0)
    await dispatcher.drain()
    assert backend.patches() == [("att-1", {"completionPercentage": 40, "status": "IN_PROGRESS"})]
    assert backend.syncs() == []

    scheduler.advance(5.0)
    await dispatcher.drain()
    assert backend.syncs() == ["att-1"]
    assert len(backend.patches()) == 1


@pytest.mark.asyncio
async def test_requests_carry_bearer_token(
    dispatcher: SyncDispatcher, scheduler: ManualScheduler, backend: FakeBackend,
) -> None:
    dispatcher.schedule(HANDLE, 5)
    scheduler.advance(5)
    await dispatcher.drain()
    assert backend.requests
    assert all(r.headers["Authorization"] == "Bearer token-123" for r in backend.requests)


@pytest.mark.asyncio
async def test_cancel_stops_both_channels(
    dispatcher: SyncDispatcher, scheduler: ManualScheduler, backend: FakeBackend,
) -> None:
    dispatcher.schedule(HANDLE, 25)
    dispatcher.cancel("att-1")
    scheduler.advance(10)
    await dispatcher.drain()
    assert backend.requests == []


@pytest.mark.asyncio
async def test_upstream_result_reaches_handler(
    dispatcher: SyncDispatcher, scheduler: ManualScheduler, backend: FakeBackend,
) -> None:
    seen: list[tuple[AttemptHandle, str, SyncProgressResult]] = []
    dispatcher.on_remote_result = lambda handle, attempt_id, result: seen.append((handle, attempt_id, result))
    backend.rotations["att-1"] = "att-2"

    dispatcher.schedule(HANDLE, 60)
    scheduler.advance(5)
    await dispatcher.drain()

    assert len(seen) == 1
    assert seen[0][0] is HANDLE
    assert seen[0][1] == "att-1"
    assert seen[0][2].attempt_id == "att-2"


@pytest.mark.asyncio
async def test_flush_sends_record_then_confirmation(
    dispatcher: SyncDispatcher, scheduler: ManualScheduler, backend: FakeBackend,
) -> None:
    dispatcher.schedule(HANDLE, 30)
    backend.sync_percentages["att-1"] = 35

    result = await dispatcher.flush(HANDLE, 30)

    methods = [(r.method, r.url.path.endswith("sync-progress")) for r in backend.requests]
    assert methods == [("PATCH", False), ("PATCH", True)]
    assert result.completion_percentage == 35
    assert scheduler.active_timers == 0


@pytest.mark.asyncio
async def test_flush_without_progress_skips_record_write(
    dispatcher: SyncDispatcher, backend: FakeBackend,
) -> None:
    await dispatcher.flush(HANDLE, None)
    assert backend.patches() == []
    assert backend.syncs() == ["att-1"]


@pytest.mark.asyncio
async def test_flush_is_best_effort(dispatcher: SyncDispatcher, backend: FakeBackend) -> None:
    backend.patch_status = 500
    backend.sync_status = 502

    result = await dispatcher.flush(HANDLE, 80)

    assert result is None
    assert len(backend.patches()) == 1
    assert backend.syncs() == ["att-1"]


@pytest.mark.asyncio
async def test_background_failure_does_not_raise(
    dispatcher: SyncDispatcher, scheduler: ManualScheduler, backend: FakeBackend,
) -> None:
    backend.patch_status = 503
    dispatcher.schedule(HANDLE, 15)
    scheduler.advance(1)
    await dispatcher.drain()
    assert len(backend.patches()) == 1
