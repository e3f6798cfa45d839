from __future__ import annotations

import logging
from typing import Any, Literal

from psycopg.rows import dict_row
from pydantic import BaseModel

from app.common.db import get_conn_async
from app.providers.embedding import EmbeddingProvider, embedding_provider
from app.providers.keywords import KeywordExtractor, keyword_extractor

logger = logging.getLogger(__name__)

FeedbackAction = Literal["like", "dislike"]

INTEREST_STEP = 0.1
PREFERENCE_KEYWORDS = 10

ARTICLE_SQL = """
SELECT id, title, description, categories, source_id
FROM articles
WHERE id = %s
"""

RECORD_ACTION_SQL = """
INSERT INTO user_actions(user_id, article_id, action)
VALUES (%s, %s, %s)
"""

UPSERT_INTEREST_SQL = """
INSERT INTO user_interests(user_id, keyword, weight, updated_at)
VALUES (%s, %s, %s, now())
ON CONFLICT (user_id, keyword) DO UPDATE SET
  weight = user_interests.weight + EXCLUDED.weight,
  updated_at = now()
"""

PREFERRED_KEYWORDS_SQL = """
SELECT keyword
FROM user_interests
WHERE user_id = %s AND weight > 0
ORDER BY weight DESC, keyword ASC
LIMIT %s
"""

USER_STATS_SQL = """
SELECT COUNT(*) FILTER (WHERE action = 'like') AS likes,
       COUNT(*) FILTER (WHERE action = 'dislike') AS dislikes
FROM user_actions
WHERE user_id = %s
"""

CATALOG_STATS_SQL = """
SELECT (SELECT COUNT(*) FROM articles) AS total_articles,
       (SELECT COUNT(*) FROM sources WHERE active) AS total_sources
"""


class ArticleNotFoundError(LookupError):
    def __init__(self, article_id: int) -> None:
        super().__init__(f"article {article_id} not found")
        self.article_id = article_id


class FeedbackResult(BaseModel):
    success: bool
    keywords: list[str]


class UserStats(BaseModel):
    likes: int = 0
    dislikes: int = 0


class FeedbackService:
    """Records likes/dislikes and folds them into the user's interest weights and preference vector."""

    def __init__(self, *, extractor: KeywordExtractor, embeddings: EmbeddingProvider) -> None:
        self.extractor = extractor
        self.embeddings = embeddings

    async def _article(self, article_id: int) -> dict[str, Any] | None:
        async with get_conn_async() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(ARTICLE_SQL, (article_id,))
                return await cur.fetchone()

    async def update_interests(self, user_id: str, action: FeedbackAction, keywords: list[str]) -> None:
        if not keywords:
            return
        weight = INTEREST_STEP if action == "like" else -INTEREST_STEP
        async with get_conn_async() as conn:
            async with conn.cursor() as cur:
                await cur.executemany(
                    UPSERT_INTEREST_SQL,
                    ((user_id, keyword.lower(), weight) for keyword in keywords),
                )

    async def preferred_keywords(self, user_id: str, limit: int = PREFERENCE_KEYWORDS) -> list[str]:
        async with get_conn_async() as conn:
            async with conn.cursor() as cur:
                await cur.execute(PREFERRED_KEYWORDS_SQL, (user_id, limit))
                return [row[0] for row in await cur.fetchall()]

    async def process_feedback(self, user_id: str, article_id: int, action: FeedbackAction) -> FeedbackResult:
        if action not in ("like", "dislike"):
            raise ValueError(f"invalid action: {action!r}")

        article = await self._article(article_id)
        if article is None:
            raise ArticleNotFoundError(article_id)

        async with get_conn_async() as conn:
            await conn.execute(RECORD_ACTION_SQL, (user_id, article_id, action))

        keywords = await self.extractor.extract_keywords(
            f"{article.get('title') or ''} {article.get('description') or ''}"
        )
        await self.update_interests(user_id, action, keywords)

        preferred = await self.preferred_keywords(user_id)
        if preferred:
            await self.embeddings.update_user_preference_vector(user_id, preferred)

        logger.info(
            "feedback user_id=%s article_id=%s action=%s keywords=%s",
            user_id, article_id, action, len(keywords),
        )
        return FeedbackResult(success=True, keywords=keywords)

    async def user_stats(self, user_id: str) -> UserStats:
        async with get_conn_async() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(USER_STATS_SQL, (user_id,))
                row = await cur.fetchone()
        if not row:
            return UserStats()
        return UserStats(likes=int(row["likes"] or 0), dislikes=int(row["dislikes"] or 0))

    async def catalog_stats(self) -> dict[str, int]:
        async with get_conn_async() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(CATALOG_STATS_SQL)
                row = await cur.fetchone() or {}
        return {
            "total_articles": int(row.get("total_articles") or 0),
            "total_sources": int(row.get("total_sources") or 0),
        }


feedback_service = FeedbackService(extractor=keyword_extractor, embeddings=embedding_provider)
