from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from dateutil import parser as date_parser


class RecallSource(enum.Flag):
    NONE = 0
    VECTOR = enum.auto()
    TAG = enum.auto()
    COLLABORATIVE = enum.auto()
    TRENDING = enum.auto()


# Merge order of the channels; recall_source strings are rendered in this order.
CHANNEL_ORDER: tuple[tuple[RecallSource, str], ...] = (
    (RecallSource.VECTOR, "vector"),
    (RecallSource.TAG, "tag"),
    (RecallSource.COLLABORATIVE, "collaborative"),
    (RecallSource.TRENDING, "trending"),
)


def source_names(sources: RecallSource) -> list[str]:
    return [name for flag, name in CHANNEL_ORDER if flag in sources]


def finite(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float; NaN, infinities and garbage become ``default``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None


@dataclass
class RankingScores:
    relevance: float = 0.0
    interest: float = 0.0
    diversity: float = 0.0
    freshness: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "relevance": self.relevance,
            "interest": self.interest,
            "diversity": self.diversity,
            "freshness": self.freshness,
        }


@dataclass
class Candidate:
    id: int
    title: str = ""
    description: str = ""
    content: str = ""
    url: str = ""
    pub_date: datetime | None = None
    author: str = ""
    categories: str = ""
    source_id: int | None = None
    source_name: str | None = None
    source_category: str | None = None
    score: float = 0.0
    created_at: datetime | None = None
    recall_sources: RecallSource = RecallSource.NONE
    recall_score: float = 0.0
    similarity_score: float | None = None
    tag_score: float | None = None
    collab_score: float | None = None
    trending_score: float | None = None
    ranking_scores: RankingScores | None = None
    final_score: float = 0.0
    explanation: str | None = None

    @property
    def recall_source(self) -> str:
        return ",".join(source_names(self.recall_sources))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Candidate:
        return cls(
            id=int(row["id"]),
            title=row.get("title") or "",
            description=row.get("description") or "",
            content=row.get("content") or "",
            url=row.get("url") or "",
            pub_date=parse_timestamp(row.get("pub_date")),
            author=row.get("author") or "",
            categories=row.get("categories") or "",
            source_id=row.get("source_id"),
            source_name=row.get("source_name"),
            source_category=row.get("source_category"),
            score=finite(row.get("score")),
            created_at=parse_timestamp(row.get("created_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "url": self.url,
            "pub_date": self.pub_date.isoformat() if self.pub_date else None,
            "author": self.author,
            "categories": self.categories,
            "source_id": self.source_id,
            "source_name": self.source_name,
            "source_category": self.source_category,
            "score": self.score,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "recall_source": self.recall_source,
            "recall_score": self.recall_score,
            "final_score": self.final_score,
        }
        for name in ("similarity_score", "tag_score", "collab_score", "trending_score"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        if self.ranking_scores is not None:
            payload["ranking_scores"] = self.ranking_scores.as_dict()
        if self.explanation is not None:
            payload["explanation"] = self.explanation
        return payload
