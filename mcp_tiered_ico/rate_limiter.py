"""
Deposit Rate Limiting

Limits how many deposits a single contributor address may submit through the
server within a 60-second window. The engine itself has no notion of request
volume; this guard lives in front of it, in the MCP tool layer.

Rate Limiting Algorithm:
- Fixed 60-second window per contributor, opened by its first deposit
- Counter resets when the window expires
- Entries older than the window are purged once the cache grows past
  MAX_TRACKED_CONTRIBUTORS
"""
import time
from collections import OrderedDict
from typing import Optional, Tuple

from mcp_tiered_ico.config import RATE_LIMIT_PER_MINUTE
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60
MAX_TRACKED_CONTRIBUTORS = 1000

# {contributor: (count, window_start)}, least recently used first
rate_limit_cache: "OrderedDict[str, Tuple[int, int]]" = OrderedDict()


def check_rate_limit(contributor: str, now: Optional[int] = None, limit: int = RATE_LIMIT_PER_MINUTE) -> bool:
    """
    Records a deposit attempt and reports whether it is within the limit.

    Args:
        contributor: Base58 address of the contributor.
        now: Unix timestamp; defaults to the current time.
        limit: Deposits allowed per window.

    Returns:
        True if the deposit may proceed, False if the limit is exceeded.
    """
    now = int(time.time()) if now is None else now

    if len(rate_limit_cache) > MAX_TRACKED_CONTRIBUTORS:
        cleanup_old_entries(now - WINDOW_SECONDS)

    count, window_start = rate_limit_cache.get(contributor, (0, now))
    if now - window_start >= WINDOW_SECONDS:
        count, window_start = 0, now
        logger.debug(f"Rate limit window reset for contributor: {contributor}")

    if count >= limit:
        logger.warning(f"Rate limit exceeded for contributor: {contributor}. Count: {count}, Limit: {limit}")
        return False

    rate_limit_cache[contributor] = (count + 1, window_start)
    rate_limit_cache.move_to_end(contributor)
    return True


def cleanup_old_entries(cutoff_time: int) -> int:
    """Removes entries whose window started before cutoff_time and returns how many were removed."""
    expired = [key for key, (_, window_start) in rate_limit_cache.items() if window_start < cutoff_time]
    for key in expired:
        del rate_limit_cache[key]
    if expired:
        logger.debug(f"Cleaned up {len(expired)} old rate limit entries")
    return len(expired)


def reset() -> None:
    rate_limit_cache.clear()
