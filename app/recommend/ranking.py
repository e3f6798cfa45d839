from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from app.common.config import RankingConfig
from app.recommend.models import Candidate, RankingScores, finite, source_names
from app.recommend.recall import matched_interest_weight
from app.recommend.store import CandidateStore

logger = logging.getLogger(__name__)

# (max hours since publish, freshness)
FRESHNESS_STEPS: tuple[tuple[float, float], ...] = (
    (1, 1.0),
    (6, 0.9),
    (24, 0.7),
    (72, 0.5),
    (168, 0.3),
)
STALE_FRESHNESS = 0.1
UNKNOWN_FRESHNESS = 0.5
INTEREST_TAG_LIMIT = 10

FALLBACK_EXPLANATION = "recommended by the algorithm"


def clamp_score(value: object) -> float:
    return max(0.0, min(1.0, finite(value)))


def relevance_score(candidate: Candidate, tag_divisor: float = 10.0) -> float:
    similarity = finite(candidate.similarity_score)
    tag = finite(candidate.tag_score) / tag_divisor if tag_divisor else 0.0
    return clamp_score(max(similarity, tag))


def interest_score(candidate: Candidate, interests: list[dict], source_preference: float, divisor: float = 5.0) -> float:
    total = matched_interest_weight(candidate.categories, interests) + finite(source_preference)
    return clamp_score(min(1.0, total / divisor))


def diversity_score(candidate: Candidate) -> float:
    score = 0.5
    if 20 < len(candidate.title or "") < 100:
        score += 0.2
    if candidate.categories:
        score += min(0.3, len(candidate.categories.split(",")) * 0.1)
    return clamp_score(min(1.0, score))


def freshness_score(candidate: Candidate, now: datetime | None = None) -> float:
    published = candidate.created_at or candidate.pub_date
    if published is None:
        return UNKNOWN_FRESHNESS
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    hours = (now - published).total_seconds() / 3600
    for limit, score in FRESHNESS_STEPS:
        if hours <= limit:
            return score
    return STALE_FRESHNESS


def source_preference_score(raw: float) -> float:
    """Likes minus half the dislikes for a source, scaled into [0, 1)."""
    return max(0.0, finite(raw) / 10)


def explain(candidate: Candidate, scores: RankingScores) -> str:
    reasons: list[str] = []
    if scores.relevance > 0.7:
        reasons.append(f"highly relevant to your interests ({scores.relevance * 100:.0f}%)")
    if scores.interest > 0.6:
        reasons.append("based on your reading preferences")
    if scores.freshness > 0.8:
        reasons.append("newest trending content")
    if len(source_names(candidate.recall_sources)) > 1:
        reasons.append("recommended by multiple strategies")
    return "; ".join(reasons) or FALLBACK_EXPLANATION


class RankingEngine:
    def __init__(self, config: RankingConfig, store: CandidateStore) -> None:
        self.config = config
        self.store = store

    async def _interests(self, user_id: str) -> list[dict]:
        try:
            return await self.store.interest_tags(user_id, INTEREST_TAG_LIMIT)
        except Exception:
            logger.exception("interest lookup failed user_id=%s", user_id)
            return []

    async def _source_preferences(self, user_id: str, source_ids: list[int]) -> dict[int, float]:
        try:
            raw = await self.store.source_preferences(user_id, source_ids)
        except Exception:
            logger.exception("source preference lookup failed user_id=%s sources=%s", user_id, len(source_ids))
            return {}
        return {source_id: source_preference_score(value) for source_id, value in raw.items()}

    def score(self, candidate: Candidate, interests: list[dict], source_preference: float, now: datetime) -> RankingScores:
        return RankingScores(
            relevance=relevance_score(candidate, self.config.tag_score_divisor),
            interest=interest_score(candidate, interests, source_preference, self.config.interest_divisor),
            diversity=diversity_score(candidate),
            freshness=clamp_score(freshness_score(candidate, now)),
        )

    def final_score(self, scores: RankingScores) -> float:
        weights = self.config.weights()
        return clamp_score(sum(weights[name] * value for name, value in scores.as_dict().items()))

    def diversify(self, candidates: list[Candidate]) -> list[Candidate]:
        """Cap repeated sources and categories near the top; over-quota items are penalised, not dropped."""
        cfg = self.config
        if len(candidates) <= cfg.diversify_threshold:
            return candidates

        ordered = sorted(candidates, key=lambda c: c.final_score, reverse=True)
        accepted: list[Candidate] = []
        included: set[int] = set()
        per_source: Counter = Counter()
        per_category: Counter = Counter()
        fill_limit = len(candidates) * cfg.penalty_fill_ratio

        for candidate in ordered:
            source = candidate.source_name or candidate.source_id
            category = candidate.source_category or "general"
            within_quota = per_source[source] < cfg.max_per_source and per_category[category] < cfg.max_per_category
            if not within_quota:
                if len(accepted) >= fill_limit:
                    continue
                candidate.final_score *= cfg.penalty_factor
            accepted.append(candidate)
            included.add(id(candidate))
            per_source[source] += 1
            per_category[category] += 1

        remaining = [c for c in ordered if id(c) not in included]
        accepted.extend(remaining[: len(candidates) - len(accepted)])
        return sorted(accepted, key=lambda c: c.final_score, reverse=True)

    async def rank(self, user_id: str, candidates: list[Candidate], enable_explain: bool = False) -> list[Candidate]:
        if not candidates:
            return []

        interests = await self._interests(user_id)
        source_ids = sorted({c.source_id for c in candidates if c.source_id is not None})
        preference_by_source = await self._source_preferences(user_id, source_ids)

        now = datetime.now(timezone.utc)
        for candidate in candidates:
            scores = self.score(candidate, interests, preference_by_source.get(candidate.source_id, 0.0), now)
            candidate.ranking_scores = scores
            candidate.final_score = self.final_score(scores)
            if enable_explain:
                candidate.explanation = explain(candidate, scores)

        ranked = self.diversify(candidates)
        ranked = sorted(ranked, key=lambda c: c.final_score, reverse=True)
        logger.info("ranking complete user_id=%s ranked=%s", user_id, len(ranked))
        return ranked
