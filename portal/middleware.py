import logging
import uuid
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class PortalHTTPException(HTTPException):
    """HTTPException tagged with a stable, machine-readable portal error code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        detail: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code


async def request_id_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _error_body(request: Request, exc: StarletteHTTPException) -> dict:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return {
        "error": {"code": getattr(exc, "code", "http_error"), "message": message},
        "request_id": getattr(request.state, "request_id", None),
    }


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Renders every HTTPException raised by routes and dependencies as the error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc),
        headers=exc.headers,
    )


async def error_envelope_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    try:
        return await call_next(request)
    except StarletteHTTPException as exc:
        return await http_error_handler(request, exc)
    except Exception:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {"code": "internal_error", "message": "An unexpected error occurred"},
                "request_id": getattr(request.state, "request_id", None),
            },
        )
