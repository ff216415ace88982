"""Background loops that keep the in-memory auth state bounded."""

import asyncio
import logging

from portfolio_api.middleware.rate_limit import RateLimiter
from portfolio_api.services.auth import AuthService

logger = logging.getLogger(__name__)


async def rate_limit_cleanup_loop(rate_limiter: RateLimiter, interval: float = 3600) -> None:
    """Periodic cleanup of inactive rate limit buckets to prevent memory leaks."""
    while True:
        try:
            await asyncio.sleep(interval)
            removed = await rate_limiter.cleanup_inactive_buckets(inactive_seconds=86400)
            if removed > 0:
                logger.debug(f"Rate limiter cleanup: removed {removed} inactive buckets")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Rate limiter cleanup error: {e}")


async def auth_state_sweep_loop(auth_service: AuthService, interval: float = 60) -> None:
    """Evict expired blacklist entries and stale failed-login windows."""
    while True:
        try:
            await asyncio.sleep(interval)
            evicted, pruned = auth_service.run_maintenance()
            if evicted or pruned:
                logger.debug(
                    f"Auth sweep: evicted {evicted} blacklist entries, "
                    f"pruned {pruned} login-attempt records"
                )
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Error sweeping auth state")
