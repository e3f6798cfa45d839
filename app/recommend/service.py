from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from app.common.config import Settings, settings
from app.providers.embedding import embedding_provider
from app.recommend.cache import CacheEvictionWorker, RecommendationCache, make_cache_key
from app.recommend.pagination import PaginationInfo, paginate
from app.recommend.ranking import RankingEngine
from app.recommend.recall import RecallEngine
from app.recommend.store import candidate_store

logger = logging.getLogger(__name__)

ALGORITHM_VERSION = "2.0"


class RecommendationError(RuntimeError):
    def __init__(self, stage: str, user_id: str) -> None:
        super().__init__(f"recommendation pipeline failed at stage={stage} user_id={user_id}")
        self.stage = stage
        self.user_id = user_id


class RecommendationOptions(BaseModel):
    page: int = 1
    page_size: int = 20
    force_refresh: bool = False
    enable_explain: bool = False

    def fingerprint(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "forceRefresh": self.force_refresh,
            "enableExplain": self.enable_explain,
        }


class ResponseMetadata(BaseModel):
    cache_used: bool
    generated_at: str
    algorithm_version: str = ALGORITHM_VERSION


class RecommendationResponse(BaseModel):
    data: list[dict[str, Any]]
    pagination: PaginationInfo
    metadata: ResponseMetadata


class RecommendationStats(BaseModel):
    cache_size: int
    cache_hit_rate: str
    recall_config: dict[str, Any]
    ranking_config: dict[str, Any]
    cache_config: dict[str, Any]
    cache_details: dict[str, Any]


class RecommendationService:
    def __init__(
        self,
        *,
        recall: RecallEngine,
        ranking: RankingEngine,
        cache: RecommendationCache,
        eviction: CacheEvictionWorker,
    ) -> None:
        self.recall = recall
        self.ranking = ranking
        self.cache = cache
        self.eviction = eviction

    def _respond(self, ranked: list[dict[str, Any]], options: RecommendationOptions, cache_used: bool) -> RecommendationResponse:
        items, pagination = paginate(ranked, options.page, options.page_size)
        return RecommendationResponse(
            data=items,
            pagination=pagination,
            metadata=ResponseMetadata(
                cache_used=cache_used,
                generated_at=datetime.now(timezone.utc).isoformat(),
            ),
        )

    async def get_recommendations(self, user_id: str, options: RecommendationOptions | None = None) -> RecommendationResponse:
        options = options or RecommendationOptions()
        fingerprint = options.fingerprint()
        cache_key = make_cache_key(user_id, fingerprint)

        if not options.force_refresh:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.info("cache hit user_id=%s page=%s", user_id, options.page)
                return self._respond(cached, options, cache_used=True)

        logger.info("generating recommendations user_id=%s force_refresh=%s", user_id, options.force_refresh)
        try:
            candidates = await self.recall.recall(user_id)
        except Exception as exc:
            logger.exception("recommendation stage failed stage=recall user_id=%s", user_id)
            raise RecommendationError("recall", user_id) from exc

        try:
            ranked = await self.ranking.rank(user_id, candidates, options.enable_explain)
        except Exception as exc:
            logger.exception("recommendation stage failed stage=ranking user_id=%s", user_id)
            raise RecommendationError("ranking", user_id) from exc

        payload = [candidate.to_dict() for candidate in ranked]
        stored = await self.cache.put(cache_key, user_id, payload, fingerprint)
        if not stored:
            logger.warning("serving uncached recommendations user_id=%s", user_id)
        self.eviction.request()

        return self._respond(payload, options, cache_used=False)

    async def get_recommendation_stats(self) -> RecommendationStats:
        details = await self.cache.stats()
        return RecommendationStats(
            cache_size=details["total_entries"],
            cache_hit_rate=details["hit_rate"],
            recall_config=self.recall.config.as_dict(),
            ranking_config=self.ranking.config.as_dict(),
            cache_config=self.cache.config.as_dict(),
            cache_details=details,
        )


def build_service(config: Settings = settings) -> RecommendationService:
    cache = RecommendationCache(config.cache)
    return RecommendationService(
        recall=RecallEngine(config.recall, candidate_store, embedding_provider),
        ranking=RankingEngine(config.ranking, candidate_store),
        cache=cache,
        eviction=CacheEvictionWorker(cache),
    )


recommendation_service = build_service()
