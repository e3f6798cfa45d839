from __future__ import annotations

import json
import logging
from typing import Sequence

import httpx
import openai
import psycopg
from psycopg.rows import dict_row

from app.common.config import settings
from app.common.db import get_conn_async

logger = logging.getLogger(__name__)

VECTOR_DIMENSION = 1536
MAX_EMBED_CHARS = 8000

USER_VECTOR_SQL = """
SELECT preference_embedding
FROM user_preference_vectors
WHERE user_id = %s
"""

UNSEEN_ARTICLE_VECTORS_SQL = """
SELECT ae.article_id, ae.title_embedding, ae.content_embedding
FROM article_embeddings ae
WHERE NOT EXISTS (
  SELECT 1 FROM user_actions ua
  WHERE ua.article_id = ae.article_id AND ua.user_id = %s
)
"""

MISSING_VECTORS_SQL = """
SELECT a.id, a.title, COALESCE(a.content, a.description, '') AS body
FROM articles a
LEFT JOIN article_embeddings ae ON ae.article_id = a.id
WHERE ae.article_id IS NULL
ORDER BY a.created_at DESC
LIMIT %s
"""


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a) ** 0.5
    norm_b = sum(x * x for x in b) ** 0.5
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingProvider:
    """Embeds text with the OpenAI API and ranks stored article vectors for a user.

    Every public method degrades instead of raising: embedding failures return ``None``
    and lookups return empty results, so callers can treat the provider as optional.
    """

    TITLE_WEIGHT = 0.6
    CONTENT_WEIGHT = 0.4

    def __init__(self, *, client: openai.AsyncOpenAI | None = None, model: str | None = None) -> None:
        self._client = client
        self.model = model or settings.embedding_model

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=settings.openai_api_key,
                http_client=httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout_s)),
            )
        return self._client

    async def embed(self, text: str) -> list[float] | None:
        if not text or not text.strip():
            return None
        try:
            response = await self.client.embeddings.create(model=self.model, input=text[:MAX_EMBED_CHARS])
            return list(response.data[0].embedding)
        except (openai.OpenAIError, httpx.HTTPError):
            logger.exception("embedding request failed model=%s", self.model)
            return None

    async def store_article_vectors(self, article_id: int, title: str, content: str) -> bool:
        title_embedding = await self.embed(title)
        content_embedding = await self.embed((content or title)[:1000])
        if not title_embedding or not content_embedding:
            logger.warning("skipping vectors for article_id=%s: embedding unavailable", article_id)
            return False

        async with get_conn_async() as conn:
            await conn.execute(
                """
                INSERT INTO article_embeddings(article_id, title_embedding, content_embedding)
                VALUES (%s, %s, %s)
                ON CONFLICT (article_id) DO UPDATE SET
                  title_embedding = EXCLUDED.title_embedding,
                  content_embedding = EXCLUDED.content_embedding,
                  created_at = now()
                """,
                (article_id, json.dumps(title_embedding), json.dumps(content_embedding)),
            )
        logger.info("stored vectors article_id=%s", article_id)
        return True

    async def update_user_preference_vector(self, user_id: str, keywords: list[str]) -> bool:
        embedding = await self.embed(" ".join(keywords))
        if not embedding:
            return False

        async with get_conn_async() as conn:
            await conn.execute(
                """
                INSERT INTO user_preference_vectors(user_id, preference_embedding, keywords, updated_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (user_id) DO UPDATE SET
                  preference_embedding = EXCLUDED.preference_embedding,
                  keywords = EXCLUDED.keywords,
                  updated_at = now()
                """,
                (user_id, json.dumps(embedding), json.dumps(keywords)),
            )
        logger.info("updated preference vector user_id=%s keywords=%s", user_id, len(keywords))
        return True

    async def personalized_recommendations(self, user_id: str, limit: int = 20) -> list[tuple[int, float]]:
        try:
            async with get_conn_async() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(USER_VECTOR_SQL, (user_id,))
                    row = await cur.fetchone()
                    if row is None:
                        logger.info("no preference vector for user_id=%s", user_id)
                        return []
                    await cur.execute(UNSEEN_ARTICLE_VECTORS_SQL, (user_id,))
                    article_rows = await cur.fetchall()
        except psycopg.Error:
            logger.exception("vector lookup failed user_id=%s", user_id)
            return []

        preference = json.loads(row["preference_embedding"])
        scored: list[tuple[int, float]] = []
        for article in article_rows:
            try:
                title_vec = json.loads(article["title_embedding"])
                content_vec = json.loads(article["content_embedding"])
            except (TypeError, ValueError):
                continue
            score = (
                cosine_similarity(preference, title_vec) * self.TITLE_WEIGHT
                + cosine_similarity(preference, content_vec) * self.CONTENT_WEIGHT
            )
            scored.append((int(article["article_id"]), score))

        scored.sort(key=lambda item: item[1], reverse=True)
        logger.info("personalized vectors user_id=%s returned=%s", user_id, min(limit, len(scored)))
        return scored[:limit]

    async def articles_missing_vectors(self, limit: int) -> list[tuple[int, str, str]]:
        async with get_conn_async() as conn:
            async with conn.cursor() as cur:
                await cur.execute(MISSING_VECTORS_SQL, (limit,))
                return [(int(r[0]), r[1] or "", r[2] or "") for r in await cur.fetchall()]

    async def stats(self) -> dict[str, object]:
        try:
            async with get_conn_async() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        SELECT (SELECT COUNT(*) FROM article_embeddings),
                               (SELECT COUNT(*) FROM user_preference_vectors)
                        """
                    )
                    articles, users = await cur.fetchone()
        except psycopg.Error:
            logger.exception("vector stats query failed")
            return {}
        return {
            "total_article_vectors": int(articles or 0),
            "total_user_preference_vectors": int(users or 0),
            "vector_dimension": VECTOR_DIMENSION,
            "embedding_model": self.model,
        }


embedding_provider = EmbeddingProvider()
