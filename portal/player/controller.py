"""Player controller: maps session results to HTTP responses."""

from __future__ import annotations

from fastapi import status

from portal.exceptions import (
    LaunchUnavailableError,
    OutlineIndexError,
    SessionNotFoundError,
)
from portal.middleware import PortalHTTPException
from portal.player.cache import DashboardCache
from portal.player.listener import InboundMessage
from portal.player.schemas import (
    DashboardRecordResponse,
    MessageAcceptedResponse,
    OpenSessionRequest,
    RuntimeMessageRequest,
    SessionResponse,
)
from portal.player.session import SessionRegistry


def _handle_domain_error(exc: Exception) -> PortalHTTPException:
    if isinstance(exc, SessionNotFoundError):
        return PortalHTTPException(status.HTTP_404_NOT_FOUND, "session_not_found", str(exc))
    if isinstance(exc, LaunchUnavailableError):
        return PortalHTTPException(
            status.HTTP_502_BAD_GATEWAY, "launch_unavailable", "Failed to load SCORM package",
        )
    if isinstance(exc, OutlineIndexError):
        return PortalHTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, "outline_index", str(exc))
    return PortalHTTPException(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Internal error.",
    )


async def open_session(
    registry: SessionRegistry, body: OpenSessionRequest, access_token: str,
) -> SessionResponse:
    try:
        session = await registry.open(body.model_dump(by_alias=True), access_token)
        return SessionResponse(**session.view())
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def get_session(registry: SessionRegistry, session_id: str) -> SessionResponse:
    try:
        return SessionResponse(**registry.get(session_id).view())
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def relaunch(registry: SessionRegistry, session_id: str) -> SessionResponse:
    try:
        session = registry.get(session_id)
        await session.relaunch()
        return SessionResponse(**session.view())
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def relay_message(
    registry: SessionRegistry, session_id: str, body: RuntimeMessageRequest,
) -> MessageAcceptedResponse:
    try:
        session = registry.get(session_id)
    except Exception as exc:
        raise _handle_domain_error(exc) from exc
    accepted = await session.receive(InboundMessage(data=body.data, origin=body.origin))
    return MessageAcceptedResponse(accepted=accepted)


async def end_session(registry: SessionRegistry, session_id: str) -> SessionResponse:
    try:
        session = registry.get(session_id)
        await session.end()
        return SessionResponse(**session.view())
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def unload(registry: SessionRegistry, session_id: str) -> None:
    try:
        await registry.unload(session_id)
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def close_session(registry: SessionRegistry, session_id: str) -> None:
    try:
        await registry.close(session_id)
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def list_dashboard(cache: DashboardCache) -> list[DashboardRecordResponse]:
    return [DashboardRecordResponse.model_validate(r) for r in cache.all()]
