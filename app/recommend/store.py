from __future__ import annotations

from typing import Any

from psycopg.rows import dict_row

from app.common.db import get_conn_async

ARTICLE_COLUMNS = """
a.id, a.source_id, a.title, a.description, a.content, a.url, a.pub_date,
a.author, a.categories, a.score, a.created_at,
s.name AS source_name, s.category AS source_category
"""

NOT_ACTED_FILTER = """
NOT EXISTS (
  SELECT 1 FROM user_actions ua_seen
  WHERE ua_seen.article_id = a.id AND ua_seen.user_id = %s
)
"""

ARTICLES_BY_ID_SQL = f"""
SELECT {ARTICLE_COLUMNS}
FROM articles a
JOIN sources s ON s.id = a.source_id
WHERE a.id = ANY(%s)
  AND {NOT_ACTED_FILTER}
"""

INTEREST_TAGS_SQL = """
SELECT keyword, weight
FROM user_interests
WHERE user_id = %s
ORDER BY weight DESC, keyword ASC
LIMIT %s
"""

TAG_RECALL_SQL = f"""
SELECT {ARTICLE_COLUMNS}
FROM articles a
JOIN sources s ON s.id = a.source_id
WHERE a.categories ILIKE ANY(%s)
  AND {NOT_ACTED_FILTER}
ORDER BY a.created_at DESC, a.id DESC
LIMIT %s
"""

SIMILAR_USERS_SQL = """
SELECT u2.user_id, COUNT(DISTINCT u1.article_id) AS common_likes
FROM user_actions u1
JOIN user_actions u2 ON u1.article_id = u2.article_id
WHERE u1.user_id = %s
  AND u2.user_id <> %s
  AND u1.action = 'like'
  AND u2.action = 'like'
GROUP BY u2.user_id
HAVING COUNT(DISTINCT u1.article_id) >= %s
ORDER BY common_likes DESC, u2.user_id ASC
LIMIT %s
"""

COLLABORATIVE_RECALL_SQL = f"""
SELECT {ARTICLE_COLUMNS},
       COUNT(ua.user_id) AS like_count
FROM articles a
JOIN sources s ON s.id = a.source_id
JOIN user_actions ua ON ua.article_id = a.id
WHERE ua.user_id = ANY(%s)
  AND ua.action = 'like'
  AND {NOT_ACTED_FILTER}
GROUP BY a.id, s.id
ORDER BY like_count DESC, a.created_at DESC, a.id DESC
LIMIT %s
"""

TRENDING_RECALL_SQL = f"""
SELECT {ARTICLE_COLUMNS},
       COUNT(ua.id) AS interaction_count,
       SUM(
         CASE ua.action
           WHEN 'like' THEN 2
           WHEN 'dislike' THEN -1
           ELSE 0
         END
       ) AS trending_score
FROM articles a
JOIN sources s ON s.id = a.source_id
LEFT JOIN user_actions ua ON ua.article_id = a.id
WHERE a.created_at > now() - make_interval(days => %s)
GROUP BY a.id, s.id
HAVING COUNT(ua.id) > 0
ORDER BY trending_score DESC, a.created_at DESC, a.id DESC
LIMIT %s
"""

SOURCE_PREFERENCES_SQL = """
SELECT a.source_id,
       SUM(CASE WHEN ua.action = 'like' THEN 1.0 ELSE -0.5 END) AS preference
FROM user_actions ua
JOIN articles a ON a.id = ua.article_id
WHERE ua.user_id = %s AND a.source_id = ANY(%s)
GROUP BY a.source_id
"""


def _like_pattern(keyword: str) -> str:
    escaped = keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CandidateStore:
    """Read access to articles, sources, user actions and interests for recall and ranking."""

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        async with get_conn_async() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(sql, params)
                return await cur.fetchall()

    async def articles_by_ids(self, article_ids: list[int], exclude_user: str) -> list[dict[str, Any]]:
        if not article_ids:
            return []
        return await self._fetch(ARTICLES_BY_ID_SQL, (article_ids, exclude_user))

    async def interest_tags(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        return await self._fetch(INTEREST_TAGS_SQL, (user_id, limit))

    async def articles_by_keywords(self, keywords: list[str], exclude_user: str, limit: int) -> list[dict[str, Any]]:
        if not keywords:
            return []
        patterns = [_like_pattern(keyword) for keyword in keywords]
        return await self._fetch(TAG_RECALL_SQL, (patterns, exclude_user, limit))

    async def similar_users(self, user_id: str, min_common_likes: int, limit: int) -> list[dict[str, Any]]:
        return await self._fetch(SIMILAR_USERS_SQL, (user_id, user_id, min_common_likes, limit))

    async def liked_by_users(self, user_ids: list[str], exclude_user: str, limit: int) -> list[dict[str, Any]]:
        if not user_ids:
            return []
        return await self._fetch(COLLABORATIVE_RECALL_SQL, (user_ids, exclude_user, limit))

    async def trending_articles(self, window_days: int, limit: int) -> list[dict[str, Any]]:
        return await self._fetch(TRENDING_RECALL_SQL, (window_days, limit))

    async def source_preferences(self, user_id: str, source_ids: list[int]) -> dict[int, float]:
        """Likes minus half the dislikes per source, in one query. Sources without actions are absent."""
        if not source_ids:
            return {}
        rows = await self._fetch(SOURCE_PREFERENCES_SQL, (user_id, source_ids))
        return {int(row["source_id"]): float(row["preference"] or 0.0) for row in rows}


candidate_store = CandidateStore()
