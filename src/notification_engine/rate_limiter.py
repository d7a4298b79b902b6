"""Gateway send budgets shared by every dispatch worker.

Each channel gateway (SMS aggregator, mail relay, push service) has a
per-window send budget. Routine traffic may only use the bulk share of
it, so a school-wide announcement cannot starve urgent messages such as
closures or safety alerts sent in the same window.
"""

import math
import time
import uuid

from redis import Redis

from notification_engine.config import RateLimitConfig
from notification_engine.enums import Priority

_PRIORITY_TRAFFIC = frozenset({Priority.HIGH, Priority.URGENT})

# KEYS[1]: the gateway's window of recent sends, scored by send time.
# ARGV: now, window seconds, ceiling for this send, member id.
_TAKE_SLOT_LUA = """
local cutoff = tonumber(ARGV[1]) - tonumber(ARGV[2])
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', cutoff)
if redis.call('ZCARD', KEYS[1]) >= tonumber(ARGV[3]) then
    return 0
end
redis.call('ZADD', KEYS[1], ARGV[1], ARGV[4])
redis.call('PEXPIRE', KEYS[1], math.ceil(tonumber(ARGV[2]) * 1000))
return 1
"""


class RateLimiter:
    """Sliding-window budget per channel gateway, kept in Redis.

    All priorities share one window per gateway; they differ only in how
    full the window may be before they are refused.
    """

    KEY_PREFIX = "school-notify:gateway"

    def __init__(self, redis_client: Redis, config: RateLimitConfig) -> None:
        self._redis = redis_client
        self._config = config
        self._take_slot = self._redis.register_script(_TAKE_SLOT_LUA)

    def key_for(self, channel: str) -> str:
        return f"{self.KEY_PREFIX}:{channel}"

    def ceiling(self, channel: str, priority: Priority = Priority.NORMAL) -> int:
        """Sends a message of *priority* may find in the window and still go out."""
        limit = self._config.limit_for_channel(channel)
        if priority in _PRIORITY_TRAFFIC:
            return limit
        return max(1, math.floor(limit * self._config.bulk_share))

    def acquire(self, channel: str, priority: Priority = Priority.NORMAL) -> bool:
        """Take a send slot on *channel*'s gateway, or return False if none is left."""
        taken = self._take_slot(
            keys=[self.key_for(channel)],
            args=[
                time.time(),
                self._config.window_seconds,
                self.ceiling(channel, priority),
                f"{priority}:{uuid.uuid4()}",
            ],
        )
        return bool(taken)
