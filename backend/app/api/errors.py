"""Global error handlers; every error body carries the request id."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.request_id import get_request_id


def _field_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Summarise validation failures without echoing the submitted input.

    Request bodies hold interest messages and contact details, so only the
    location and error type are returned.
    """
    summary: list[dict[str, Any]] = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ())]
        summary.append(
            {
                "field": ".".join(location),
                "type": error.get("type", "value_error"),
                "msg": error.get("msg", ""),
            }
        )
    return summary


def _error_response(request: Request, status_code: int, body: dict[str, Any], headers=None) -> JSONResponse:
    body["request_id"] = get_request_id(request)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        return _error_response(request, exc.status_code, {"detail": exc.detail}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        return _error_response(request, 422, {"detail": "validation_error", "errors": _field_errors(exc)})
