import logging
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from app.common.db import ensure_schema
from app.feedback.service import ArticleNotFoundError, FeedbackResult, UserStats, feedback_service
from app.providers.embedding import embedding_provider
from app.recommend.service import (
    RecommendationError,
    RecommendationOptions,
    RecommendationResponse,
    RecommendationStats,
    recommendation_service,
)
from app.sources.service import Source, source_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await ensure_schema()
    recommendation_service.eviction.start()
    try:
        yield
    finally:
        await recommendation_service.eviction.stop()


app = FastAPI(title="News Recommendation API", lifespan=lifespan)


class FeedbackRequest(BaseModel):
    action: Literal["like", "dislike"]
    userId: str = "default"


class SourceRequest(BaseModel):
    name: str = ""
    url: str = ""
    category: str | None = None


class SourceCreated(BaseModel):
    success: bool
    id: int


class StatsResponse(BaseModel):
    total_articles: int
    total_sources: int
    user_stats: UserStats
    vector_stats: dict[str, object]


@app.get("/recommendations", response_model=RecommendationResponse)
async def get_recommendations(
    userId: str = Query("default", min_length=1),
    page: int = Query(1),
    pageSize: int = Query(20),
    forceRefresh: bool = Query(False),
    enableExplain: bool = Query(False),
) -> RecommendationResponse:
    options = RecommendationOptions(
        page=page,
        page_size=pageSize,
        force_refresh=forceRefresh,
        enable_explain=enableExplain,
    )
    try:
        return await recommendation_service.get_recommendations(userId, options)
    except RecommendationError:
        raise HTTPException(status_code=500, detail="Failed to get recommendations")


@app.get("/recommendations/stats", response_model=RecommendationStats)
async def get_recommendation_stats() -> RecommendationStats:
    return await recommendation_service.get_recommendation_stats()


@app.post("/articles/{article_id}/feedback", response_model=FeedbackResult)
async def post_feedback(article_id: int, body: FeedbackRequest) -> FeedbackResult:
    try:
        return await feedback_service.process_feedback(body.userId, article_id, body.action)
    except ArticleNotFoundError:
        raise HTTPException(status_code=404, detail="Article not found")


@app.get("/sources", response_model=list[Source])
async def list_sources() -> list[Source]:
    return await source_service.list_active()


@app.post("/sources", response_model=SourceCreated)
async def add_source(body: SourceRequest) -> SourceCreated:
    if not body.name.strip() or not body.url.strip():
        raise HTTPException(status_code=400, detail="Name and URL are required")
    source_id = await source_service.add_source(body.name.strip(), body.url.strip(), body.category)
    return SourceCreated(success=True, id=source_id)


@app.get("/stats", response_model=StatsResponse)
async def get_stats(userId: str = Query("default", min_length=1)) -> StatsResponse:
    catalog = await feedback_service.catalog_stats()
    return StatsResponse(
        **catalog,
        user_stats=await feedback_service.user_stats(userId),
        vector_stats=await embedding_provider.stats(),
    )
