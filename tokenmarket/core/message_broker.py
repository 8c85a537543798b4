"""
Message Broker Client for Publishing Events
Using Redis Pub/Sub for simplicity
"""
import json
from typing import Any

import redis
import structlog

logger = structlog.get_logger(__name__)

CHANNEL_PREFIX = "tokenmarket."


class MessageBroker:
    """Redis-based message broker for asynchronous communication."""

    def __init__(self, redis_url: str):
        self.redis_client = redis.Redis.from_url(redis_url, decode_responses=True)

    def publish(self, channel: str, message: dict[str, Any]) -> None:
        """
        Publish a message to a channel.

        Args:
            channel: Channel name without prefix (e.g., 'listing.created')
            message: Message data as dictionary
        """
        self.redis_client.publish(CHANNEL_PREFIX + channel, json.dumps(message, default=str))

    def forward(self, event: str, data: dict[str, Any]) -> None:
        """Event publisher callback: push every event to its Redis channel."""
        try:
            self.publish(event, {"event": event, "data": data})
        except redis.RedisError as e:
            logger.warning("event_forward_failed", event_name=event, error=str(e))

    def close(self) -> None:
        self.redis_client.close()
