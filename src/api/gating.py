"""Gate middleware — runs every protected call through ``RequestGate``.

Denials are answered here with the structured error body and never reach
the route. Admitted calls are forwarded and then completed: the slot is
released and usage is recorded whatever the route did.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.api.deps import services_from_app
from src.api.errors import epoch_ms, error_response
from src.api.middleware import account_id_from_request
from src.core.constants import (
    EXCLUDED_PATHS,
    HEADER_REMAINING,
    HEADER_REQUESTED_TOKENS,
    HEADER_RESET,
    HEADER_TOKENS_USED,
    HEADER_USER_ID,
)
from src.core.exceptions import GateBaseError
from src.core.logging import bind_request_context, clear_request_context, get_logger
from src.saas.gate import GateAdmission, GateRequest

log = get_logger(__name__)

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def _int_header(headers: Mapping[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class GateMiddleware(BaseHTTPMiddleware):
    """Authenticate, authorize, meter and bound concurrency of protected calls."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        try:
            services = services_from_app(request)
        except GateBaseError as exc:
            if any(path.startswith(p) for p in EXCLUDED_PATHS):
                return await call_next(request)
            log.error("gate_services_missing", path=path)
            return error_response(exc)

        gate = services.gate
        if not gate.is_protected(path):
            return await call_next(request)

        raw_body = await request.body() if request.method.upper() in _BODY_METHODS else b""
        account_id = account_id_from_request(request)
        gate_request = GateRequest(
            path=path,
            method=request.method,
            account_id=account_id,
            query=dict(request.query_params),
            body=self._json_body(request, raw_body),
            content_length=_int_header(request.headers, "content-length") or len(raw_body),
            declared_tokens=_int_header(request.headers, HEADER_REQUESTED_TOKENS),
            ip_address=_client_ip(request),
        )

        bind_request_context(account_id=account_id or "-", path=path)
        try:
            try:
                admission = await gate.admit(gate_request)
            except GateBaseError as exc:
                log.info("gate_denied", code=exc.code, method=request.method)
                return error_response(exc)

            request.state.account_id = admission.account_id
            request.state.project_access = admission.access
            request.state.access_scope = admission.access_scope

            success = False
            tokens_used: int | None = None
            try:
                response = await call_next(request)
                success = response.status_code < 400
                tokens_used = _int_header(response.headers, HEADER_TOKENS_USED)
            finally:
                await gate.complete(admission, success=success, tokens_used=tokens_used)

            self._set_gate_headers(response, admission)
            return response
        finally:
            clear_request_context()

    @staticmethod
    def _json_body(request: Request, raw_body: bytes) -> Mapping[str, Any] | None:
        if not raw_body or "json" not in request.headers.get("content-type", ""):
            return None
        try:
            parsed = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return parsed if isinstance(parsed, dict) else None

    @staticmethod
    def _set_gate_headers(response: Response, admission: GateAdmission) -> None:
        response.headers[HEADER_USER_ID] = admission.account_id
        if admission.decision is not None:
            response.headers[HEADER_REMAINING] = str(admission.decision.remaining.to_wire())
            response.headers[HEADER_RESET] = epoch_ms(admission.decision.reset_time)
