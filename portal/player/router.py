"""Player router: session lifecycle, relayed runtime messages, unload beacon.

HTTP layer only. Delegates to controller for business logic.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from portal.dependencies import get_access_token, get_dashboard_cache, get_registry
from portal.player import controller
from portal.player.cache import DashboardCache
from portal.player.schemas import (
    DashboardRecordResponse,
    MessageAcceptedResponse,
    OpenSessionRequest,
    RuntimeMessageRequest,
    SessionResponse,
)
from portal.player.session import SessionRegistry

router = APIRouter(prefix="/player", tags=["Player"])


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a course in the player",
    description="Starts a player session at the first lesson and launches it. "
    "A launch failure does not fail the request: it is reported in `error` "
    "as a blocking state for that lesson.",
)
async def open_session(
    body: OpenSessionRequest,
    registry: SessionRegistry = Depends(get_registry),
    access_token: str = Depends(get_access_token),
) -> SessionResponse:
    return await controller.open_session(registry, body, access_token)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    summary="Current session state",
)
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: str = Depends(get_access_token),
) -> SessionResponse:
    return await controller.get_session(registry, session_id)


@router.post(
    "/sessions/{session_id}/launch",
    response_model=SessionResponse,
    summary="Retry the current lesson's launch",
    description="Asks the backend for a fresh launch URL and attempt id. "
    "Returns 502 when the launch is still unavailable.",
)
async def relaunch(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: str = Depends(get_access_token),
) -> SessionResponse:
    return await controller.relaunch(registry, session_id)


@router.post(
    "/sessions/{session_id}/messages",
    response_model=MessageAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Relay a SCORM runtime message",
    description="Forward every `message` event the SCORM frame posts. "
    "Untrusted origins, stale attempts and malformed payloads are dropped "
    "silently (`accepted: false`).",
)
async def relay_message(
    session_id: str,
    body: RuntimeMessageRequest,
    registry: SessionRegistry = Depends(get_registry),
    _: str = Depends(get_access_token),
) -> MessageAcceptedResponse:
    return await controller.relay_message(registry, session_id, body)


@router.post(
    "/sessions/{session_id}/end",
    response_model=SessionResponse,
    summary="End the SCORM session",
    description="Final sync of the current progress to the attempt record and the "
    "upstream confirmation endpoint, then advance if the lesson is complete.",
)
async def end_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: str = Depends(get_access_token),
) -> SessionResponse:
    return await controller.end_session(registry, session_id)


@router.post(
    "/sessions/{session_id}/unload",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Page unload beacon",
    description="Target of `navigator.sendBeacon` on `beforeunload`. Queues one "
    "best-effort attempt write, then closes the session. No auth header: "
    "beacons cannot carry one; the session's stored token is used.",
)
async def unload(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    await controller.unload(registry, session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a player session",
)
async def close_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: str = Depends(get_access_token),
) -> Response:
    await controller.close_session(registry, session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/dashboard",
    response_model=list[DashboardRecordResponse],
    summary="Dashboard progress records",
)
async def list_dashboard(
    cache: DashboardCache = Depends(get_dashboard_cache),
    _: str = Depends(get_access_token),
) -> list[DashboardRecordResponse]:
    return await controller.list_dashboard(cache)
