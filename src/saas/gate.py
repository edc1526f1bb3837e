"""Request gate — one admit/deny pipeline per inbound protected call.

authenticate → project access → premium feature → rate limit → concurrency
slot → (forward) → ``complete()`` releases the slot and records usage.

Fault policies:

- ``*_fail_open``: a fault in quota, concurrency or usage recording is
  logged and the call proceeds.
- ``*_fail_closed``: a fault in project access or feature checks denies the
  call with ``DependencyUnavailableError``.
"""

from __future__ import annotations

import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from src.core.constants import (
    EXCLUDED_PATHS,
    FEATURE_PATHS,
    METHOD_PERMISSIONS,
    PROJECT_PROTECTED_PATHS,
    PROTECTED_API_PATHS,
    TOKEN_ESTIMATE_BYTES_PER_TOKEN,
    TOKEN_ESTIMATE_MIN,
)
from src.core.exceptions import (
    AccountInactiveError,
    AuthenticationRequiredError,
    ConcurrencyExceededError,
    DependencyUnavailableError,
    FeatureDeniedError,
    GateBaseError,
    QuotaExceededError,
    RequestTooLargeError,
)
from src.core.logging import get_logger
from src.core.types import Tier, UsageOutcome
from src.saas.access import AccessControlResolver, ProjectAccess
from src.saas.concurrency import ConcurrencyGuard, ConcurrencySlot
from src.saas.usage import DenialReason, RateLimitDecision, UsageLedger

log = get_logger(__name__)

_PROJECT_PATH_RE = re.compile(r"^/api/projects/([^/]+)")
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def estimate_tokens(content_length: int) -> int:
    """Rough token estimate from payload size when the caller declares none."""
    return max(content_length // TOKEN_ESTIMATE_BYTES_PER_TOKEN, TOKEN_ESTIMATE_MIN)


def call_type_for(path: str) -> str:
    """``/api/<type>/...`` → ``<type>``."""
    parts = path.split("/")
    return parts[2] if len(parts) > 2 and parts[2] else "unknown"


def extract_project_id(
    path: str,
    method: str,
    query: Mapping[str, str],
    body: Mapping[str, Any] | None,
) -> str | None:
    """Project id from the path, then the query string, then a JSON body."""
    match = _PROJECT_PATH_RE.match(path)
    if match:
        return match.group(1)

    project_id = query.get("project_id") or query.get("projectId")
    if project_id:
        return project_id

    if method.upper() in _BODY_METHODS and body:
        raw = body.get("project_id") or body.get("projectId")
        if raw:
            return str(raw)
    return None


@dataclass
class GateRequest:
    """Transport-neutral view of an inbound call."""

    path: str
    method: str = "GET"
    account_id: str | None = None
    query: Mapping[str, str] = field(default_factory=dict)
    body: Mapping[str, Any] | None = None
    content_length: int = 0
    declared_tokens: int | None = None
    ip_address: str | None = None


@dataclass
class GateAdmission:
    """State carried from ``admit()`` to ``complete()`` for one call."""

    account_id: str
    endpoint: str
    call_type: str
    tokens: int
    project_id: str | None = None
    access: ProjectAccess | None = None
    access_scope: str | None = None
    decision: RateLimitDecision | None = None
    slot: ConcurrencySlot | None = None
    ip_address: str | None = None
    started_at: float = field(default_factory=time.monotonic)


class RequestGate:
    """Orchestrates the per-request gating decision."""

    def __init__(
        self,
        ledger: UsageLedger,
        guard: ConcurrencyGuard,
        resolver: AccessControlResolver,
        protected_paths: tuple[str, ...] = PROTECTED_API_PATHS,
        project_paths: tuple[str, ...] = PROJECT_PROTECTED_PATHS,
        excluded_paths: tuple[str, ...] = EXCLUDED_PATHS,
        feature_paths: Mapping[str, str] | None = None,
    ) -> None:
        self._ledger = ledger
        self._guard = guard
        self._resolver = resolver
        self._protected_paths = protected_paths
        self._project_paths = project_paths
        self._excluded_paths = excluded_paths
        self._feature_paths = dict(FEATURE_PATHS if feature_paths is None else feature_paths)

    # ── Route rules ──────────────────────────────────────────────

    def is_protected(self, path: str) -> bool:
        if any(path.startswith(p) for p in self._excluded_paths):
            return False
        return any(path.startswith(p) for p in (*self._protected_paths, *self._project_paths))

    def is_rate_limited(self, path: str) -> bool:
        return any(path.startswith(p) for p in self._protected_paths)

    def is_project_scoped(self, path: str) -> bool:
        return any(path.startswith(p) for p in self._project_paths)

    def required_feature(self, path: str) -> str | None:
        for prefix, feature in self._feature_paths.items():
            if path.startswith(prefix):
                return feature
        return None

    @staticmethod
    def required_permission(method: str) -> str:
        return METHOD_PERMISSIONS.get(method.upper(), "read")

    # ── Pipeline ─────────────────────────────────────────────────

    async def admit(self, request: GateRequest) -> GateAdmission:
        """Run the pipeline; raise a ``GateBaseError`` subclass on denial."""
        if not request.account_id:
            raise AuthenticationRequiredError("Authentication required")

        account_id = request.account_id
        tokens = (
            request.declared_tokens
            if request.declared_tokens is not None
            else estimate_tokens(request.content_length)
        )
        admission = GateAdmission(
            account_id=account_id,
            endpoint=request.path,
            call_type=call_type_for(request.path),
            tokens=tokens,
            ip_address=request.ip_address,
        )

        if self.is_project_scoped(request.path):
            admission.project_id = extract_project_id(
                request.path, request.method, request.query, request.body,
            )
            if admission.project_id:
                permission = self.required_permission(request.method)
                admission.access, admission.access_scope = await self._resolve_access_fail_closed(
                    account_id, admission.project_id, permission,
                )

        feature = self.required_feature(request.path)
        if feature:
            await self._check_feature_fail_closed(account_id, feature)

        if self.is_rate_limited(request.path):
            admission.decision = await self._check_rate_limit_fail_open(account_id, tokens)
            if admission.decision is not None and not admission.decision.allowed:
                await self._record_fail_open(admission, UsageOutcome.RATE_LIMITED, tokens_used=0)
                raise self._denial_error(admission.decision)

            tier = admission.decision.tier if admission.decision else None
            if tier is not None:
                await self._acquire_slot_fail_open(admission, tier)

        log.debug(
            "gate_admitted",
            account_id=account_id,
            path=request.path,
            project_id=admission.project_id,
            tokens=tokens,
        )
        return admission

    async def complete(
        self,
        admission: GateAdmission,
        success: bool,
        tokens_used: int | None = None,
    ) -> None:
        """Release the concurrency slot and record the call's outcome."""
        try:
            if admission.decision is not None:
                outcome = UsageOutcome.SUCCESS if success else UsageOutcome.FAILED
                used = admission.tokens if tokens_used is None else tokens_used
                await self._record_fail_open(admission, outcome, tokens_used=used)
        finally:
            if admission.slot is not None:
                try:
                    await self._guard.release(admission.slot)
                except Exception:
                    log.exception("concurrency_release_failed", account_id=admission.account_id)

    # ── Fail-closed: authorization ───────────────────────────────

    async def _resolve_access_fail_closed(
        self,
        account_id: str,
        project_id: str,
        permission: str,
    ) -> tuple[ProjectAccess, str]:
        """Resolve project access; any fault denies the call."""
        try:
            access = await self._resolver.check_project_access(account_id, project_id)
        except Exception as exc:
            log.exception("access_check_failed", account_id=account_id, project_id=project_id)
            raise DependencyUnavailableError(
                "Project permission check failed",
                context={"project_id": project_id},
            ) from exc

        scope = access.scope_for(permission)
        if scope is None:
            raise AccessControlResolver.denial_for(access, project_id, permission)
        return access, scope

    async def _check_feature_fail_closed(self, account_id: str, feature: str) -> None:
        try:
            denial = await self._ledger.feature_denial(account_id, feature)
        except Exception as exc:
            log.exception("feature_check_failed", account_id=account_id, feature=feature)
            raise DependencyUnavailableError("Feature access check failed") from exc
        if denial is DenialReason.ACCOUNT_NOT_FOUND:
            raise AccountInactiveError("Account not found")
        if denial is DenialReason.ACCOUNT_INACTIVE:
            raise AccountInactiveError("Account is inactive")
        if denial is not None:
            raise FeatureDeniedError(
                f"Your tier does not include the '{feature}' feature",
                required_feature=feature,
            )

    # ── Fail-open: cost control ──────────────────────────────────

    async def _check_rate_limit_fail_open(
        self,
        account_id: str,
        tokens: int,
    ) -> RateLimitDecision | None:
        """Quota decision, or None when evaluating it faulted (call proceeds)."""
        try:
            return await self._ledger.check_rate_limit(account_id, tokens)
        except Exception:
            log.exception("rate_limit_check_failed_open", account_id=account_id)
            return None

    async def _acquire_slot_fail_open(self, admission: GateAdmission, tier: Tier) -> None:
        try:
            admission.slot = await self._guard.acquire(admission.account_id, tier)
        except Exception:
            log.exception("concurrency_check_failed_open", account_id=admission.account_id)
            return
        if admission.slot is None:
            await self._record_fail_open(admission, UsageOutcome.RATE_LIMITED, tokens_used=0)
            decision = admission.decision
            raise ConcurrencyExceededError(
                "Too many concurrent requests for your tier",
                remaining=decision.remaining.to_wire() if decision else None,
                reset_time=decision.reset_time if decision else None,
            )

    async def _record_fail_open(
        self,
        admission: GateAdmission,
        outcome: UsageOutcome,
        tokens_used: int,
    ) -> None:
        latency_ms = (time.monotonic() - admission.started_at) * 1000
        call_type = "rate_limit" if outcome is UsageOutcome.RATE_LIMITED else admission.call_type
        try:
            await self._ledger.increment_usage(
                admission.account_id,
                call_type,
                admission.endpoint,
                tokens_used,
                latency_ms,
                outcome=outcome,
                ip_address=admission.ip_address,
            )
        except Exception:
            log.exception("usage_record_failed_open", account_id=admission.account_id)

    @staticmethod
    def _denial_error(decision: RateLimitDecision) -> GateBaseError:
        remaining = decision.remaining.to_wire()
        if decision.reason is DenialReason.REQUEST_TOO_LARGE:
            return RequestTooLargeError(decision.message, remaining=remaining, reset_time=decision.reset_time)
        if decision.reason in (DenialReason.ACCOUNT_INACTIVE, DenialReason.ACCOUNT_NOT_FOUND):
            return AccountInactiveError(decision.message)
        return QuotaExceededError(decision.message, remaining=remaining, reset_time=decision.reset_time)
