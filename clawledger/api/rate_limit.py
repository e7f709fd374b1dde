"""
Request limits for the public API (slowapi).

A global default applies to every route through SlowAPIMiddleware.
Chart routes carry a tighter limit of their own because each miss goes
out to DexScreener / GeckoTerminal. Webhooks and /health are exempt.
Counters are shared through Redis db 1 when REDIS_URL is set.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from clawledger.config import get_settings

settings = get_settings()


def client_key(request: Request) -> str:
    """Client IP, taken from the first X-Forwarded-For hop when trusted."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",", 1)[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


def _storage_uri() -> str:
    if not settings.redis_url:
        return "memory://"
    return f"{settings.redis_url.rstrip('/')}/1"


limiter = Limiter(
    key_func=client_key,
    default_limits=[settings.rate_limit_global],
    storage_uri=_storage_uri(),
    strategy="fixed-window",
)

chart_limit = limiter.limit(settings.rate_limit_charts)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the API's error shape, with Retry-After."""
    retry_after = int(getattr(exc, "retry_after", 60) or 60)
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "detail": f"Too many requests to {request.url.path} ({exc.detail})",
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
