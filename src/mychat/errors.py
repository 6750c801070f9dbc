"""Error types and the uniform error envelope.

Native API errors render as ``{"error": {"message", "code", "status", "details"?}}``.
The OpenAI-compatible surface under ``/v1`` renders
``{"error": {"message", "type", "param"?, "code"?}}`` instead.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

OPENAI_PREFIX = "/v1"

_HTTP_CODES = {
    400: "VALIDATION_ERROR",
    401: "AUTHENTICATION_ERROR",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    503: "SERVICE_UNAVAILABLE",
}


class AppError(Exception):
    """An error raised by a handler that maps onto an HTTP status and error code."""

    def __init__(
        self,
        message: str,
        status: int = 500,
        code: str = "INTERNAL_ERROR",
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details


class OpenAIError(Exception):
    """An error on the OpenAI-compatible surface."""

    def __init__(
        self,
        message: str,
        status: int = 400,
        error_type: str = "invalid_request_error",
        param: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.type = error_type
        self.param = param
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message, "type": self.type}
        if self.param is not None:
            body["param"] = self.param
        if self.code is not None:
            body["code"] = self.code
        return {"error": body}


class StorageError(Exception):
    """Raised when a storage document cannot be read or written."""


class SessionNotFoundError(AppError):
    """The referenced session does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found", 404, "SESSION_NOT_FOUND")
        self.session_id = session_id


def _is_openai_path(request: Request) -> bool:
    path = request.url.path
    return path == OPENAI_PREFIX or path.startswith(OPENAI_PREFIX + "/")


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]


def register_error_handlers(app: FastAPI, *, production: bool = False) -> None:
    """Install exception handlers that render every failure in the error envelope."""

    def envelope(
        message: str,
        status: int,
        code: str,
        details: Any = None,
        exc: BaseException | None = None,
    ) -> JSONResponse:
        if production and status >= 500:
            message = "Internal Server Error"
        error: dict[str, Any] = {"message": message, "code": code, "status": status}
        if details is not None:
            error["details"] = details
        if exc is not None and not production:
            error["stack"] = "".join(traceback.format_exception(exc))
        return JSONResponse(status_code=status, content={"error": error})

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
        return envelope(exc.message, exc.status, exc.code, exc.details)

    @app.exception_handler(OpenAIError)
    async def handle_openai_error(request: Request, exc: OpenAIError) -> JSONResponse:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.type, exc.message)
        return JSONResponse(status_code=exc.status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = _validation_details(exc)
        if _is_openai_path(request):
            first = details[0] if details else {"field": None, "message": "Invalid request"}
            err = OpenAIError(
                f"Invalid request: {first['message']}",
                status=400,
                param=first["field"] or None,
            )
            return JSONResponse(status_code=400, content=err.to_dict())
        return envelope("Invalid request", 400, "VALIDATION_ERROR", details)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if _is_openai_path(request):
            err_type = "server_error" if exc.status_code >= 500 else "invalid_request_error"
            err = OpenAIError(message, status=exc.status_code, error_type=err_type)
            return JSONResponse(status_code=exc.status_code, content=err.to_dict())
        code = _HTTP_CODES.get(exc.status_code, "INTERNAL_ERROR")
        return envelope(message, exc.status_code, code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        if _is_openai_path(request):
            err = OpenAIError(
                "Internal server error" if production else str(exc) or "Internal server error",
                status=500,
                error_type="server_error",
                code="internal_error",
            )
            return JSONResponse(status_code=500, content=err.to_dict())
        return envelope(str(exc) or "Internal Server Error", 500, "INTERNAL_ERROR", exc=exc)
