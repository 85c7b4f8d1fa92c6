import hashlib
import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ARTICLE_LIST_PATTERN = "articles:list:*"


def article_detail_key(article_id: str) -> str:
    return f"articles:detail:{article_id}"


def article_list_key(scope: str, params: dict) -> str:
    """
    Key for one page of an article listing.

    *scope* names whose view this is (``guest``, ``user:<id>``, ``admin``),
    since two requesters with the same filters can see different articles.
    *params* holds every filter, paging and sorting value.
    """
    digest = hashlib.sha1(
        json.dumps(params, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()
    return f"articles:list:{scope}:{digest}"


class CacheManager:
    """
    Cache-aside manager backed by Redis.

    All public methods are safe to call even when Redis is unavailable or
    no URL is configured: reads return None and writes are skipped, so the
    application keeps serving from the database.
    """

    def __init__(self, url: str | None = None, ttl_list: int = 60, ttl_detail: int = 300) -> None:
        self._url = url
        self.ttl_list = ttl_list
        self.ttl_detail = ttl_detail
        self._redis: redis.Redis | None = None
        self._hits: int = 0
        self._misses: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        if not self._url:
            logger.info("No REDIS_URL configured, cache disabled")
            return
        client = redis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await client.ping()
        except RedisError as exc:
            logger.warning("Redis ping failed, cache disabled: %s", exc)
            await client.aclose()
            return
        self._redis = client
        logger.info("Redis connected: %s", self._url)

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        if not self._redis:
            self._misses += 1
            return None
        try:
            data = await self._redis.get(key)
        except RedisError as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            self._misses += 1
            return None
        if data is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(data)

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        """Store *value* under *key*; a failed write is logged, never raised."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except RedisError as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching *pattern* using SCAN (avoids blocking KEYS)."""
        if not self._redis:
            return
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
                logger.debug("Cache invalidated %d key(s) matching %r", len(keys), pattern)
        except RedisError as exc:
            logger.debug("Cache DELETE_PATTERN error for pattern=%r: %s", pattern, exc)

    # ------------------------------------------------------------------
    # Domain-level invalidation
    # ------------------------------------------------------------------

    async def invalidate_articles(self, article_id: str | None = None) -> None:
        """
        Purge every cached listing, plus the detail entry of *article_id*
        when given.  Any article write makes every listing stale.
        """
        await self.delete_pattern(ARTICLE_LIST_PATTERN)
        if article_id is not None:
            await self.delete_pattern(article_detail_key(article_id))

    async def invalidate_all_articles(self) -> None:
        # Used when an unknown set of articles went away (user deletion).
        await self.delete_pattern("articles:*")

    @property
    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }
