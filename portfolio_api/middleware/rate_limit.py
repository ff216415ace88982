"""General request rate limiting, applied before the auth gate."""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from portfolio_api.core.request_utils import get_client_ip, get_request_id
from portfolio_api.services.errors import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class PathRateLimitConfig:
    """Limits for one path prefix."""

    requests_per_minute: int = 60
    requests_per_hour: int = 1000
    burst_size: int = 10


@dataclass
class RateLimitBucket:
    """Rate limit tracking for a single client+path combination."""

    tokens: float = 10.0
    last_update: float = field(default_factory=time.monotonic)
    minute_requests: list[float] = field(default_factory=list)
    hour_requests: list[float] = field(default_factory=list)


class RateLimiter:
    """In-memory per-IP limiter: sliding minute/hour windows plus a token bucket.

    Intended for a single-process deployment; state is lost on restart.
    """

    def __init__(
        self,
        default_config: PathRateLimitConfig | None = None,
        path_configs: dict[str, PathRateLimitConfig] | None = None,
    ) -> None:
        self._buckets: dict[str, RateLimitBucket] = defaultdict(RateLimitBucket)
        self._lock = asyncio.Lock()
        self._default_config = default_config or PathRateLimitConfig(
            requests_per_minute=100,
            requests_per_hour=2000,
            burst_size=20,
        )
        # Admin auth endpoints get tighter limits than the rest of the API;
        # failed logins are additionally tracked per IP by the auth service.
        self._path_configs: dict[str, PathRateLimitConfig] = (
            path_configs
            if path_configs is not None
            else {
                "/api/admin/login": PathRateLimitConfig(
                    requests_per_minute=20,
                    requests_per_hour=200,
                    burst_size=10,
                ),
                "/api/admin/refresh": PathRateLimitConfig(
                    requests_per_minute=30,
                    requests_per_hour=500,
                    burst_size=10,
                ),
            }
        )

    def get_config_for_path(self, path: str) -> PathRateLimitConfig:
        for prefix, config in self._path_configs.items():
            if path.startswith(prefix):
                return config
        return self._default_config

    def _get_bucket_key(self, client_ip: str, path: str) -> str:
        for prefix in self._path_configs:
            if path.startswith(prefix):
                return f"{client_ip}:{prefix}"
        return f"{client_ip}:default"

    @staticmethod
    def _prune_windows(bucket: RateLimitBucket, now: float) -> None:
        bucket.minute_requests = [ts for ts in bucket.minute_requests if ts > now - 60]
        bucket.hour_requests = [ts for ts in bucket.hour_requests if ts > now - 3600]

    async def check_rate_limit(self, client_ip: str, path: str) -> tuple[bool, dict[str, str]]:
        """Check whether a request is allowed.

        Returns:
            Tuple of (is_allowed, headers_dict)
        """
        config = self.get_config_for_path(path)
        bucket_key = self._get_bucket_key(client_ip, path)

        async with self._lock:
            bucket = self._buckets[bucket_key]
            now = time.monotonic()
            self._prune_windows(bucket, now)

            minute_remaining = config.requests_per_minute - len(bucket.minute_requests)
            hour_remaining = config.requests_per_hour - len(bucket.hour_requests)

            headers = {
                "X-RateLimit-Limit": str(config.requests_per_minute),
                "X-RateLimit-Remaining": str(max(0, minute_remaining - 1)),
            }

            if minute_remaining <= 0:
                oldest = min(bucket.minute_requests, default=now)
                headers["Retry-After"] = str(max(1, int(60 - (now - oldest))))
                return False, headers

            if hour_remaining <= 0:
                oldest = min(bucket.hour_requests, default=now)
                headers["Retry-After"] = str(max(1, int(3600 - (now - oldest))))
                return False, headers

            # Token bucket for burst control
            refill_rate = config.requests_per_minute / 60.0
            bucket.tokens = min(
                config.burst_size,
                bucket.tokens + (now - bucket.last_update) * refill_rate,
            )
            bucket.last_update = now

            if bucket.tokens < 1.0:
                headers["Retry-After"] = "1"
                return False, headers

            bucket.tokens -= 1.0
            bucket.minute_requests.append(now)
            bucket.hour_requests.append(now)
            return True, headers

    async def reset(self, client_ip: str | None = None) -> None:
        async with self._lock:
            if client_ip:
                for key in [k for k in self._buckets if k.startswith(f"{client_ip}:")]:
                    del self._buckets[key]
            else:
                self._buckets.clear()

    async def cleanup_inactive_buckets(self, inactive_seconds: int = 86400) -> int:
        """Remove buckets idle for ``inactive_seconds``. Returns count removed."""
        async with self._lock:
            cutoff = time.monotonic() - inactive_seconds
            stale = [
                key
                for key, bucket in self._buckets.items()
                if bucket.last_update < cutoff
                and all(ts < cutoff for ts in bucket.hour_requests)
            ]
            for key in stale:
                del self._buckets[key]

        if stale:
            logger.info(f"Cleaned up {len(stale)} inactive rate limit buckets")
        return len(stale)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject over-limit clients with 429 RATE_LIMITED before auth runs."""

    def __init__(
        self,
        app: ASGIApp,
        rate_limiter: RateLimiter,
        exclude_paths: list[str] | None = None,
        trusted_proxies: set[str] | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.exclude_paths = exclude_paths if exclude_paths is not None else ["/health"]
        self.trusted_proxies = trusted_proxies or set()
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.enabled or request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        if any(path == p or path.startswith(p + "/") for p in self.exclude_paths):
            return await call_next(request)

        client_ip = get_client_ip(request, self.trusted_proxies)
        is_allowed, headers = await self.rate_limiter.check_rate_limit(client_ip, path)

        if not is_allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} on {path}")
            error = RateLimitedError(
                "Too many requests. Please try again later.",
                retry_after=int(headers.get("Retry-After", 60)),
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_envelope(get_request_id(request)),
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response
