"""Dashboard cache: per-course progress records shown by the library UI.

Records live in process memory and are replaced whole, synchronously, by the
reconciliation engine, so the UI never waits on the network. When redis is
configured every replacement is mirrored best-effort.

Key schema
----------
dashboard:course:{course_id}        Hash   TTL 24h   progress/status/units

Redis writes are fire-and-forget; a failure is logged and never reaches the
engine.
"""

from __future__ import annotations

import asyncio
import logging
import time

from redis.asyncio import Redis

from portal.player.models import CourseStatus, DashboardRecord

logger = logging.getLogger(__name__)

_DEFAULT_TTL = 24 * 3600


def _course_key(course_id: str) -> str:
    return f"dashboard:course:{course_id}"


async def mirror_record(record: DashboardRecord, redis: Redis, ttl: int = _DEFAULT_TTL) -> None:
    key = _course_key(record.course_id)
    await redis.hset(key, mapping={
        "progress": str(record.progress),
        "status": record.status.value,
        "completed_units": str(record.completed_units),
        "updated_at": str(int(time.time())),
    })
    await redis.expire(key, ttl)


async def load_record(course_id: str, redis: Redis) -> DashboardRecord | None:
    data = await redis.hgetall(_course_key(course_id))
    if not data:
        return None
    return DashboardRecord(
        course_id=course_id,
        progress=int(data.get("progress", 0)),
        status=CourseStatus(data.get("status", CourseStatus.NOT_STARTED.value)),
        completed_units=int(data.get("completed_units", 0)),
    )


class DashboardCache:
    def __init__(self, redis: Redis | None = None, ttl: int = _DEFAULT_TTL) -> None:
        self._records: dict[str, DashboardRecord] = {}
        self._redis = redis
        self._ttl = ttl
        self._mirrors: set[asyncio.Task] = set()

    def get(self, course_id: str) -> DashboardRecord | None:
        return self._records.get(course_id)

    def all(self) -> list[DashboardRecord]:
        return list(self._records.values())

    def replace(self, record: DashboardRecord) -> None:
        self._records[record.course_id] = record
        if self._redis is not None:
            self._schedule_mirror(record)

    def _schedule_mirror(self, record: DashboardRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._mirror(record))
        self._mirrors.add(task)
        task.add_done_callback(self._mirrors.discard)

    async def _mirror(self, record: DashboardRecord) -> None:
        try:
            await mirror_record(record, self._redis, self._ttl)
        except Exception as exc:
            logger.warning("Dashboard mirror failed for course %s: %s", record.course_id, exc)

    async def warm(self, course_id: str) -> DashboardRecord | None:
        """Seed one record from redis when memory has none."""
        if course_id in self._records or self._redis is None:
            return self._records.get(course_id)
        try:
            record = await load_record(course_id, self._redis)
        except Exception as exc:
            logger.warning("Dashboard load failed for course %s: %s", course_id, exc)
            return None
        if record is not None:
            self._records[course_id] = record
        return record

    async def flush(self) -> None:
        if self._mirrors:
            await asyncio.gather(*list(self._mirrors), return_exceptions=True)
