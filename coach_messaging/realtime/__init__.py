# Realtime delivery of message events
from typing import Optional

from .base import RealtimeChannel, Subscription, publish_quietly
from .in_process import InProcessChannel
from .redis_channel import RedisChannel

__all__ = [
    "InProcessChannel",
    "RealtimeChannel",
    "RedisChannel",
    "Subscription",
    "build_channel",
    "publish_quietly",
]


def build_channel(redis_url: Optional[str] = None) -> RealtimeChannel:
    """Redis pub/sub when a broker is configured, in-process fan-out otherwise."""
    if redis_url:
        return RedisChannel(redis_url)
    return InProcessChannel()
