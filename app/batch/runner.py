import asyncio
import logging
import os
import time

from dotenv import load_dotenv
from psycopg.rows import dict_row

from app.common.db import get_conn_async
from app.providers.embedding import embedding_provider
from app.providers.keywords import keyword_extractor
from app.recommend.service import recommendation_service

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 50
SCORING_BATCH_SIZE = 50

UNSCORED_ARTICLES_SQL = """
SELECT id, title, description, content
FROM articles
WHERE COALESCE(score, 0) = 0
ORDER BY created_at DESC
LIMIT %s
"""


def importance_score(analysis: dict) -> float:
    """Base score of 5 nudged by the LLM's 0-10 importance, bounded to [0, 10]."""
    try:
        importance = float(analysis.get("importance", 5))
    except (TypeError, ValueError):
        importance = 5.0
    return max(0.0, min(10.0, 5.0 + importance * 0.5))


async def backfill_embeddings(limit: int = EMBEDDING_BATCH_SIZE) -> int:
    stored = 0
    for article_id, title, body in await embedding_provider.articles_missing_vectors(limit):
        if await embedding_provider.store_article_vectors(article_id, title, body):
            stored += 1
    return stored


async def score_new_articles(limit: int = SCORING_BATCH_SIZE) -> int:
    async with get_conn_async() as conn:
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(UNSCORED_ARTICLES_SQL, (limit,))
            articles = await cur.fetchall()

    updates: list[tuple[float, int]] = []
    for article in articles:
        analysis = await keyword_extractor.analyze_article(article)
        updates.append((importance_score(analysis), article["id"]))

    if updates:
        async with get_conn_async() as conn:
            async with conn.cursor() as cur:
                await cur.executemany("UPDATE articles SET score = %s WHERE id = %s", updates)
    return len(updates)


async def run_once() -> None:
    removed = await recommendation_service.cache.evict()
    embedded = await backfill_embeddings()
    scored = await score_new_articles()
    logger.info("batch pass evicted=%s embedded=%s scored=%s", removed, embedded, scored)


async def run_forever(interval_s: int) -> None:
    while True:
        started = time.time()
        try:
            await run_once()
            elapsed = time.time() - started
            sleep_for = max(1, interval_s - int(elapsed))
            logger.info("batch cycle complete in %.2fs; sleeping %ss", elapsed, sleep_for)
            await asyncio.sleep(sleep_for)
        except Exception:
            logger.exception("batch cycle failed; retrying in 15s")
            await asyncio.sleep(15)


def main() -> None:
    interval_s = int(os.environ.get("BATCH_INTERVAL_S", "1800"))
    logger.info("starting batch runner with interval=%ss", interval_s)
    asyncio.run(run_forever(interval_s))


if __name__ == "__main__":
    main()
