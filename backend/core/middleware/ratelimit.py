from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from backend.core.errors import RateLimitError, app_error_handler
from backend.core.logging import get_request_id
from backend.core.ratelimit import DEFAULT_MESSAGES, RateLimiter
from backend.models.rate_limit import RateLimitAction

EXEMPT_PATHS = {"/healthz", "/readyz"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client-IP api-default limiter (opt-in via RATE_LIMIT_API_ENABLED).

    X-Forwarded-For is only read when the direct peer is one of
    `trusted_proxies`.
    """

    def __init__(
        self,
        app,
        *,
        limiter: RateLimiter,
        enabled: bool = False,
        trusted_proxies: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled
        self.trusted_proxies = frozenset(trusted_proxies or ())

    def _client_key(self, request: Request) -> str:
        peer = request.client.host if request.client else "unknown"
        if peer in self.trusted_proxies:
            hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
            # Rightmost hop not added by one of our own proxies
            for hop in reversed(hops):
                if hop not in self.trusted_proxies:
                    return f"ip:{hop}"
        return f"ip:{peer}"

    async def dispatch(self, request: Request, call_next):
        if not self.enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        key = self._client_key(request)
        if self.limiter.check_and_consume(key, RateLimitAction.API_DEFAULT):
            return await call_next(request)

        policy = self.limiter.policy_for(RateLimitAction.API_DEFAULT)
        info = self.limiter.get_info(key, RateLimitAction.API_DEFAULT)
        retry_after = max(1, int(info.reset_at - self.limiter.time_fn()))
        rid = getattr(request.state, "request_id", None) or get_request_id()

        response = await app_error_handler(
            request,
            RateLimitError(DEFAULT_MESSAGES[RateLimitAction.API_DEFAULT], retry_after=retry_after, request_id=rid),
        )
        response.headers["X-RateLimit-Limit"] = str(policy.max_attempts)
        response.headers["X-RateLimit-Remaining"] = str(info.remaining)
        response.headers["X-RateLimit-Reset"] = str(int(info.reset_at))
        return response
