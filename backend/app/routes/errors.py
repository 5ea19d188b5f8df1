"""Exception handlers rendering failures as the API response envelope."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ..schemas.subscriptions import ApiEnvelope
from ..subscriptions import SubscriptionError

logger = logging.getLogger(__name__)


def envelope_response(status_code: int, payload: Mapping[str, Any]) -> JSONResponse:
    """Build a ``success=false`` envelope from an ``{error, message, ...}`` payload."""

    detail: Dict[str, Any] = {key: value for key, value in payload.items() if key not in {"error", "message"}}
    body = ApiEnvelope.fail(
        code=str(payload.get("error", "error")),
        message=str(payload.get("message", "Request failed")),
        detail=detail,
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body, by_alias=True))


async def _subscription_error_handler(request: Request, exc: SubscriptionError) -> JSONResponse:
    logger.info("Subscription request %s %s failed: %s", request.method, request.url.path, exc.code)
    return envelope_response(exc.status_code, exc.payload)


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, Mapping):
        payload: Mapping[str, Any] = exc.detail
    else:
        payload = {"error": f"http_{exc.status_code}", "message": str(exc.detail)}
    response = envelope_response(exc.status_code, payload)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return envelope_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {"error": "validation_error", "message": "Request validation failed", "errors": errors},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SubscriptionError, _subscription_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)


__all__ = ["envelope_response", "register_exception_handlers"]
