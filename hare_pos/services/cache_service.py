"""
Cache Service: Redis caching with JSON serialization, plus pub/sub for app_state change pushes.
"""
import redis.asyncio as redis
from hare_pos.utils.config import settings
import logging
import json

logger = logging.getLogger(__name__)


class CacheService:
    def __init__(self):
        self.redis_url = settings.REDIS_URL
        self.host = settings.REDIS_HOST
        self.port = settings.REDIS_PORT
        self.db = settings.REDIS_DB
        self.user = settings.REDIS_USERNAME
        self.pwd = settings.REDIS_PASSWORD
        self.ttl = settings.REDIS_CACHE_TTL
        self.redis = None

    async def connect(self):
        if not self.redis:
            url = self.redis_url or f"redis://{self.host}:{self.port}/{self.db}"
            if not url.startswith(("redis://", "rediss://")):
                url = f"redis://{url}"

            if "@" not in url and (self.user or self.pwd):
                prefix = "rediss://" if url.startswith("rediss://") else "redis://"
                host_part = url[len(prefix):]
                url = f"{prefix}{self.user or 'default'}:{self.pwd or ''}@{host_part}"

            self.redis = redis.from_url(url, encoding="utf-8", decode_responses=True)

    async def close(self):
        if self.redis:
            try:
                await self.redis.aclose()
            except Exception as e:
                logger.warning(f"Redis close error: {e}")
            self.redis = None

    async def ping(self) -> bool:
        await self.connect()
        return bool(await self.redis.ping())

    async def get(self, key: str):
        await self.connect()
        try:
            return await self.redis.get(key)
        except Exception as e:
            logger.error(f"Redis get error: {e}")
            return None

    async def set(self, key: str, value: str, expire: int = None):
        await self.connect()
        try:
            await self.redis.set(key, value, ex=expire or self.ttl)
        except Exception as e:
            logger.error(f"Redis set error: {e}")

    async def get_json(self, key: str):
        data = await self.get(key)
        if not data:
            return None
        try:
            return json.loads(data)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry: {key}")
            return None

    async def set_json(self, key: str, value, ttl: int = None):
        await self.set(key, json.dumps(value), expire=ttl)

    # ========== Pub/Sub (realtime push) ==========

    async def publish(self, channel: str, message: dict) -> int:
        """Publish a JSON message. Returns the number of receivers (0 on error)."""
        await self.connect()
        try:
            return await self.redis.publish(channel, json.dumps(message))
        except Exception as e:
            logger.error(f"Redis publish error on {channel}: {e}")
            return 0

    async def subscribe(self, channel: str):
        """Open a pub/sub connection subscribed to one channel. Caller closes it."""
        await self.connect()
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(channel)
        return pubsub


def state_cache_key(org_id: str, kind: str) -> str:
    return f"pos:{org_id}:{kind}"


def state_channel(org_id: str) -> str:
    return f"{settings.REALTIME_CHANNEL_PREFIX}:{org_id}"


cache_service = CacheService()
