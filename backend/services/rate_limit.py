from dataclasses import dataclass
import logging

from services.state_store import EphemeralStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int = 0
    backend_error: bool = False


async def check_limit(
    store: EphemeralStateStore,
    scope: str,
    identifier: str,
    *,
    limit: int,
    window_seconds: int,
) -> RateLimitResult:
    """Count one hit against ``scope:identifier``; fails open if the store errors."""
    if limit <= 0 or window_seconds <= 0:
        return RateLimitResult(allowed=True)
    key = f"rate_limit:{scope}:{identifier or 'global'}"
    try:
        count = await store.incr(key, window_seconds)
    except Exception as exc:
        logger.warning(f"Rate limiter failed for {scope}:{identifier} - {exc}")
        return RateLimitResult(allowed=True, backend_error=True)
    return RateLimitResult(allowed=count <= limit, count=count)
