from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import psycopg
from psycopg.rows import dict_row

from app.common.config import CacheConfig
from app.common.db import get_conn_async

logger = logging.getLogger(__name__)

CACHE_READ_SQL = """
SELECT data
FROM recommendation_cache
WHERE cache_key = %s AND expires_at > now()
"""

CACHE_HIT_SQL = """
UPDATE recommendation_cache
SET hit_count = hit_count + 1
WHERE cache_key = %s
"""

CACHE_UPSERT_SQL = """
INSERT INTO recommendation_cache(cache_key, user_id, data, options, created_at, expires_at, hit_count)
VALUES (%s, %s, %s, %s, now(), now() + make_interval(secs => %s), 0)
ON CONFLICT (cache_key) DO UPDATE SET
  user_id = EXCLUDED.user_id,
  data = EXCLUDED.data,
  options = EXCLUDED.options,
  created_at = EXCLUDED.created_at,
  expires_at = EXCLUDED.expires_at,
  hit_count = 0
"""

EVICT_EXPIRED_SQL = "DELETE FROM recommendation_cache WHERE expires_at <= now()"

EVICT_OLDEST_SQL = """
DELETE FROM recommendation_cache
WHERE id IN (
  SELECT id
  FROM recommendation_cache
  ORDER BY created_at ASC, id ASC
  LIMIT GREATEST(0, (SELECT COUNT(*) FROM recommendation_cache) - %s)
)
"""

CACHE_STATS_SQL = """
SELECT COUNT(*) AS total_entries,
       COUNT(*) FILTER (WHERE expires_at > now()) AS active_entries,
       COALESCE(SUM(hit_count), 0) AS total_hits,
       AVG(hit_count) AS avg_hit_count,
       MAX(hit_count) AS max_hit_count,
       MIN(created_at) AS oldest_entry,
       MAX(created_at) AS newest_entry
FROM recommendation_cache
"""

EMPTY_STATS: dict[str, Any] = {
    "total_entries": 0,
    "active_entries": 0,
    "expired_entries": 0,
    "hit_rate": "0%",
    "avg_hit_count": 0.0,
    "max_hit_count": 0,
    "oldest_entry": None,
    "newest_entry": None,
}


def make_cache_key(user_id: str, options: dict[str, Any]) -> str:
    canonical = json.dumps(options, sort_keys=True, separators=(",", ":"), default=str)
    return f"rec_{user_id}_{canonical}"


def format_hit_rate(total_hits: int, total_entries: int) -> str:
    # Each stored entry stands for the miss that produced it.
    lookups = total_hits + total_entries
    if lookups <= 0:
        return "0%"
    return f"{total_hits / lookups * 100:.1f}%"


class RecommendationCache:
    """Ranked result sets persisted per fingerprint with a TTL and hit accounting.

    Store errors never escape: reads degrade to a miss and writes report ``False``.
    """

    def __init__(self, config: CacheConfig) -> None:
        self.config = config

    async def get(self, cache_key: str) -> list[dict[str, Any]] | None:
        try:
            async with get_conn_async() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(CACHE_READ_SQL, (cache_key,))
                    row = await cur.fetchone()
                    if row is None:
                        return None
                    try:
                        payload = json.loads(row[0])
                    except (TypeError, ValueError):
                        logger.warning("corrupt cache payload key=%s", cache_key)
                        return None
                    if not isinstance(payload, list):
                        logger.warning("unexpected cache payload type key=%s type=%s", cache_key, type(payload).__name__)
                        return None
                    await cur.execute(CACHE_HIT_SQL, (cache_key,))
        except psycopg.Error:
            logger.exception("cache read failed key=%s", cache_key)
            return None
        return payload

    async def put(self, cache_key: str, user_id: str, ranked: list[dict[str, Any]], options: dict[str, Any]) -> bool:
        try:
            data = json.dumps(ranked)
            options_json = json.dumps(options, sort_keys=True)
        except (TypeError, ValueError):
            logger.exception("cache payload not serializable key=%s", cache_key)
            return False

        try:
            async with get_conn_async() as conn:
                await conn.execute(
                    CACHE_UPSERT_SQL,
                    (cache_key, user_id, data, options_json, self.config.ttl_s),
                )
        except psycopg.Error:
            logger.exception("cache write failed key=%s", cache_key)
            return False
        logger.info("cached recommendations key=%s items=%s", cache_key, len(ranked))
        return True

    async def evict(self) -> int:
        try:
            async with get_conn_async() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(EVICT_EXPIRED_SQL)
                    expired = max(cur.rowcount, 0)
                    await cur.execute(EVICT_OLDEST_SQL, (self.config.max_cache_size,))
                    overflow = max(cur.rowcount, 0)
        except psycopg.Error:
            logger.exception("cache eviction failed")
            return 0
        logger.info("cache eviction removed expired=%s overflow=%s", expired, overflow)
        return expired + overflow

    async def stats(self) -> dict[str, Any]:
        try:
            async with get_conn_async() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(CACHE_STATS_SQL)
                    row = await cur.fetchone()
        except psycopg.Error:
            logger.exception("cache stats query failed")
            return dict(EMPTY_STATS)
        if not row:
            return dict(EMPTY_STATS)

        total = int(row["total_entries"] or 0)
        active = int(row["active_entries"] or 0)
        return {
            "total_entries": total,
            "active_entries": active,
            "expired_entries": total - active,
            "hit_rate": format_hit_rate(int(row["total_hits"] or 0), total),
            "avg_hit_count": round(float(row["avg_hit_count"] or 0.0), 2),
            "max_hit_count": int(row["max_hit_count"] or 0),
            "oldest_entry": row["oldest_entry"].isoformat() if row["oldest_entry"] else None,
            "newest_entry": row["newest_entry"].isoformat() if row["newest_entry"] else None,
        }


class CacheEvictionWorker:
    """Background task that runs cache eviction whenever a write signals it."""

    def __init__(self, cache: RecommendationCache) -> None:
        self.cache = cache
        self._queue: asyncio.Queue[None] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def request(self) -> bool:
        """Signal an eviction pass. Pending signals coalesce; returns whether one was queued."""
        if not self.running:
            return False
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            return False
        return True

    async def _run(self) -> None:
        while True:
            await self._queue.get()
            try:
                await self.cache.evict()
            except Exception:
                logger.exception("eviction pass failed")
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="cache-eviction")
            logger.info("cache eviction worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("cache eviction worker stopped")
