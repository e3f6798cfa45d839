from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from app.common.config import RecallConfig
from app.providers.embedding import EmbeddingProvider
from app.recommend.models import Candidate, RecallSource, finite
from app.recommend.store import CandidateStore

logger = logging.getLogger(__name__)

SCORE_FIELDS: dict[RecallSource, str] = {
    RecallSource.VECTOR: "similarity_score",
    RecallSource.TAG: "tag_score",
    RecallSource.COLLABORATIVE: "collab_score",
    RecallSource.TRENDING: "trending_score",
}


def interest_weight(interest: dict) -> float:
    weight = interest.get("weight")
    return 1.0 if weight is None else finite(weight)


def matched_interest_weight(categories: str, interests: list[dict]) -> float:
    """Sum of the weights of interest keywords found in a comma-joined category string."""
    if not categories:
        return 0.0
    haystack = categories.lower()
    total = 0.0
    for interest in interests:
        keyword = (interest.get("keyword") or "").lower()
        if keyword and keyword in haystack:
            total += interest_weight(interest)
    return total


def merge_channels(channel_results: list[tuple[RecallSource, list[Candidate]]]) -> list[Candidate]:
    """Merge channel outputs by article id, keeping first-seen order and recall provenance.

    The first channel to produce an article sets ``recall_score``; later channels only add
    their flag and their own raw score field.
    """
    merged: dict[int, Candidate] = {}
    for source, candidates in channel_results:
        score_field = SCORE_FIELDS[source]
        for candidate in candidates:
            existing = merged.get(candidate.id)
            if existing is None:
                candidate.recall_sources = source
                candidate.recall_score = finite(getattr(candidate, score_field))
                merged[candidate.id] = candidate
                continue
            existing.recall_sources |= source
            setattr(existing, score_field, getattr(candidate, score_field))
    return list(merged.values())


class RecallEngine:
    def __init__(self, config: RecallConfig, store: CandidateStore, embeddings: EmbeddingProvider) -> None:
        self.config = config
        self.store = store
        self.embeddings = embeddings

    async def vector_recall(self, user_id: str, limit: int) -> list[Candidate]:
        matches = await self.embeddings.personalized_recommendations(user_id, limit)
        if not matches:
            return []
        similarity = {article_id: score for article_id, score in matches}
        rows = await self.store.articles_by_ids(list(similarity), user_id)
        candidates: list[Candidate] = []
        for row in rows:
            candidate = Candidate.from_row(row)
            candidate.similarity_score = finite(similarity.get(candidate.id))
            candidates.append(candidate)
        # Keep the provider's similarity order rather than the database's.
        candidates.sort(key=lambda c: -c.similarity_score)
        return candidates

    async def tag_recall(self, user_id: str, limit: int) -> list[Candidate]:
        interests = await self.store.interest_tags(user_id, self.config.interest_tag_limit)
        keywords = [i["keyword"] for i in interests if i.get("keyword")]
        if not keywords:
            return []
        rows = await self.store.articles_by_keywords(keywords, user_id, limit)
        candidates: list[Candidate] = []
        for row in rows:
            candidate = Candidate.from_row(row)
            candidate.tag_score = matched_interest_weight(candidate.categories, interests)
            candidates.append(candidate)
        return candidates

    async def collaborative_recall(self, user_id: str, limit: int) -> list[Candidate]:
        similar = await self.store.similar_users(
            user_id, self.config.min_common_likes, self.config.similar_user_limit
        )
        if not similar:
            return []
        rows = await self.store.liked_by_users([u["user_id"] for u in similar], user_id, limit)
        candidates: list[Candidate] = []
        for row in rows:
            candidate = Candidate.from_row(row)
            candidate.collab_score = finite(row.get("like_count"))
            candidates.append(candidate)
        return candidates

    async def trending_recall(self, limit: int) -> list[Candidate]:
        rows = await self.store.trending_articles(self.config.trending_window_days, limit)
        candidates: list[Candidate] = []
        for row in rows:
            candidate = Candidate.from_row(row)
            candidate.trending_score = finite(row.get("trending_score"))
            candidates.append(candidate)
        return candidates

    async def _run_channel(self, name: str, user_id: str, fetch: Callable[[], Awaitable[list[Candidate]]]) -> list[Candidate]:
        try:
            candidates = await fetch()
        except Exception:
            logger.exception("recall channel failed channel=%s user_id=%s", name, user_id)
            return []
        logger.info("recall channel=%s user_id=%s candidates=%s", name, user_id, len(candidates))
        return candidates

    async def recall(self, user_id: str) -> list[Candidate]:
        """Run every enabled channel concurrently and merge the results."""
        cfg = self.config
        channels: list[tuple[RecallSource, str, bool, Callable[[], Awaitable[list[Candidate]]]]] = [
            (RecallSource.VECTOR, "vector", cfg.vector_recall.enabled,
             lambda: self.vector_recall(user_id, cfg.vector_recall.candidate_size)),
            (RecallSource.TAG, "tag", cfg.tag_recall.enabled,
             lambda: self.tag_recall(user_id, cfg.tag_recall.candidate_size)),
            (RecallSource.COLLABORATIVE, "collaborative", cfg.collaborative_recall.enabled,
             lambda: self.collaborative_recall(user_id, cfg.collaborative_recall.candidate_size)),
            (RecallSource.TRENDING, "trending", cfg.trending_recall.enabled,
             lambda: self.trending_recall(cfg.trending_recall.candidate_size)),
        ]
        enabled = [(source, name, fetch) for source, name, on, fetch in channels if on]
        results = await asyncio.gather(
            *(self._run_channel(name, user_id, fetch) for _, name, fetch in enabled)
        )
        merged = merge_channels([(source, found) for (source, _, _), found in zip(enabled, results)])
        logger.info("recall complete user_id=%s candidates=%s", user_id, len(merged))
        return merged
