import os
import logging
import redis
from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"
EVENT_LOG_SIZE = 200


class PubSubClient:
    def __init__(self, redis_url: str = None, redis_client: redis.Redis = None):
        if redis_client is not None:
            self.redis = redis_client
        else:
            self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
            self.redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )

    def publish(self, channel: str, event: Event):
        self.redis.publish(channel, event.to_json())

    def publish_server_event(self, server_id: str, event: Event):
        """Publish on the server's channel and the global channel, and keep a short log."""
        self.publish(f"server:{server_id}:events", event)
        self.publish(GLOBAL_CHANNEL, event)
        self.log_event(server_id, event)

    def get_recent_events(self, server_id: str, count: int = 50) -> list:
        key = f"server:{server_id}:event_log"
        events_json = self.redis.lrange(key, 0, count - 1)
        events = []
        for raw in events_json:
            try:
                events.append(Event.from_json(raw))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable event in {key}: {e}")
        return events

    def log_event(self, server_id: str, event: Event):
        key = f"server:{server_id}:event_log"
        self.redis.lpush(key, event.to_json())
        self.redis.ltrim(key, 0, EVENT_LOG_SIZE - 1)
