import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal import __version__
from portal.config import Settings
from portal.middleware import (
    error_envelope_middleware,
    http_error_handler,
    request_id_middleware,
)
from portal.player.cache import DashboardCache
from portal.player.guard import Beacon
from portal.player.router import router as player_router
from portal.player.session import SessionRegistry

logger = logging.getLogger(__name__)


def get_settings() -> Settings:
    return Settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    http = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.backend_timeout_secs, connect=3.0),
        transport=app.state.transport,
    )
    redis = (
        aioredis.from_url(settings.redis_url, decode_responses=True)
        if settings.redis_url
        else None
    )
    app.state.http = http
    app.state.redis = redis
    app.state.beacon = Beacon(http)
    app.state.dashboard = DashboardCache(redis, ttl=settings.dashboard_cache_ttl_secs)
    app.state.registry = SessionRegistry(settings, http, app.state.beacon, app.state.dashboard)
    logger.info("Portal started (env=%s, backend=%s)", settings.env_name, settings.backend_base_url)

    yield

    # Shutdown: cancel session timers first, then let queued beacons finish
    await app.state.registry.close_all()
    await app.state.beacon.aclose()
    await app.state.dashboard.flush()
    await http.aclose()
    if redis is not None:
        await redis.aclose()


SWAGGER_DESCRIPTION = """\
## Learner Portal: SCORM Attempt Sync

Keeps a learner's SCORM progress consistent between the embedded course
player, the portal's navigation state and the backend attempt record.

### Flow

1. `POST /api/v1/player/sessions` with the course outline: launches lesson (0, 0).
2. The page hosting the SCORM frame relays every `message` event to
   `POST /api/v1/player/sessions/{id}/messages`.
3. Progress is pushed to the backend on two debounced channels
   (attempt record ~1s, upstream confirmation ~5s).
4. On `beforeunload` the page beacons `POST /api/v1/player/sessions/{id}/unload`.

### Lesson states

```
NOT_STARTED → IN_PROGRESS → COMPLETED   (forward only)
```
"""


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="Learner Portal",
        version=__version__,
        description=SWAGGER_DESCRIPTION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.transport = transport  # tests inject an httpx.MockTransport
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(error_envelope_middleware)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    app.include_router(player_router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    async def health() -> dict:
        return {"status": "ok", "service": "portal"}

    return app


app = create_app()
