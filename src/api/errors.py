"""Rendering of gate errors as structured JSON responses."""

from __future__ import annotations

from datetime import datetime

from fastapi import Request
from fastapi.responses import JSONResponse

from src.api.models.schemas import ErrorResponse
from src.core.constants import HEADER_REMAINING, HEADER_RESET, RETRY_AFTER_SECONDS
from src.core.exceptions import GateBaseError


def epoch_ms(moment: datetime) -> str:
    return str(int(moment.timestamp() * 1000))


def error_response(exc: GateBaseError) -> JSONResponse:
    """Body ``{error, message, code, ...}``; 429s also carry retry headers."""
    body = ErrorResponse(
        error=exc.title,
        message=exc.message,
        code=exc.code,
        **exc.wire_extras(),
    )
    headers: dict[str, str] = {}
    if exc.status_code == 429:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
        extras = exc.wire_extras()
        if extras.get("remaining") is not None:
            headers[HEADER_REMAINING] = str(extras["remaining"])
        if extras.get("reset_time") is not None:
            headers[HEADER_RESET] = epoch_ms(extras["reset_time"])

    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


async def gate_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for ``GateBaseError`` raised inside routes."""
    assert isinstance(exc, GateBaseError)
    return error_response(exc)
