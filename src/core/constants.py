"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

# ── Token estimation ─────────────────────────────────────────────
TOKEN_ESTIMATE_BYTES_PER_TOKEN = 4
TOKEN_ESTIMATE_MIN = 100

# ── Concurrency ──────────────────────────────────────────────────
CONCURRENCY_RELEASE_SECONDS = 30.0
CONCURRENCY_KEY_PREFIX = "gate:inflight:"

# ── Responses ────────────────────────────────────────────────────
RETRY_AFTER_SECONDS = 3600
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_USER_ID = "X-User-Id"
HEADER_REQUESTED_TOKENS = "X-Requested-Tokens"
HEADER_TOKENS_USED = "X-Tokens-Used"
AUTH_COOKIE = "gate_token"

# ── Route rules ──────────────────────────────────────────────────
PROTECTED_API_PATHS: tuple[str, ...] = (
    "/api/ai/",
    "/api/rfp/",
    "/api/market-research/",
    "/api/persona/",
    "/api/proposal/",
    "/api/projects/",
)

PROJECT_PROTECTED_PATHS: tuple[str, ...] = (
    "/api/projects/",
    "/api/rfp/",
    "/api/proposal/",
    "/api/construction/",
    "/api/operation/",
)

EXCLUDED_PATHS: tuple[str, ...] = (
    "/api/auth/",
    "/api/health",
    "/api/status",
)

FEATURE_PATHS: dict[str, str] = {
    "/api/rfp/": "rfp_analysis",
    "/api/market-research/": "market_research",
    "/api/persona/": "persona_analysis",
    "/api/proposal/": "proposal_generation",
}

METHOD_PERMISSIONS: dict[str, str] = {
    "GET": "read",
    "HEAD": "read",
    "OPTIONS": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}

# ── Pricing (USD per 1K tokens) ──────────────────────────────────
API_COSTS: dict[str, dict[str, float]] = {
    "claude-3-5-sonnet": {"input": 0.003, "output": 0.015},
    "claude-3-sonnet": {"input": 0.003, "output": 0.015},
    "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
    "claude-3-opus": {"input": 0.015, "output": 0.075},
    "openai-gpt-4": {"input": 0.01, "output": 0.03},
    "openai-gpt-3.5": {"input": 0.0005, "output": 0.0015},
    "rfp_analysis": {"input": 0.003, "output": 0.015},
    "market_research": {"input": 0.003, "output": 0.015},
    "persona_analysis": {"input": 0.003, "output": 0.015},
}
DEFAULT_API_COST = "claude-3-haiku"
