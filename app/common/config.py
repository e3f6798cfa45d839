import os
from dataclasses import asdict, dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_flag(name: str, default: bool = True) -> bool:
    return os.getenv(name, "1" if default else "0").strip().lower() not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class ChannelConfig:
    enabled: bool
    weight: float
    candidate_size: int


@dataclass(frozen=True)
class RecallConfig:
    vector_recall: ChannelConfig = ChannelConfig(
        enabled=_env_flag("RECALL_VECTOR_ENABLED"),
        weight=0.4,
        candidate_size=_env_int("RECALL_VECTOR_SIZE", 200),
    )
    tag_recall: ChannelConfig = ChannelConfig(
        enabled=_env_flag("RECALL_TAG_ENABLED"),
        weight=0.3,
        candidate_size=_env_int("RECALL_TAG_SIZE", 150),
    )
    collaborative_recall: ChannelConfig = ChannelConfig(
        enabled=_env_flag("RECALL_COLLABORATIVE_ENABLED"),
        weight=0.2,
        candidate_size=_env_int("RECALL_COLLABORATIVE_SIZE", 100),
    )
    trending_recall: ChannelConfig = ChannelConfig(
        enabled=_env_flag("RECALL_TRENDING_ENABLED"),
        weight=0.1,
        candidate_size=_env_int("RECALL_TRENDING_SIZE", 50),
    )
    interest_tag_limit: int = 10
    similar_user_limit: int = 10
    min_common_likes: int = 2
    trending_window_days: int = 7

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class RankingConfig:
    relevance: float = 0.4
    interest: float = 0.3
    diversity: float = 0.2
    freshness: float = 0.1
    # Raw tag scores are unbounded sums of interest weights.
    tag_score_divisor: float = _env_float("RANKING_TAG_SCORE_DIVISOR", 10.0)
    interest_divisor: float = 5.0
    diversify_threshold: int = 10
    max_per_source: int = 3
    max_per_category: int = 5
    penalty_fill_ratio: float = 0.8
    penalty_factor: float = 0.8

    def weights(self) -> dict[str, float]:
        return {
            "relevance": self.relevance,
            "interest": self.interest,
            "diversity": self.diversity,
            "freshness": self.freshness,
        }

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class CacheConfig:
    ttl_s: int = _env_int("CACHE_TTL_S", 1800)
    max_cache_size: int = _env_int("CACHE_MAX_SIZE", 1000)
    page_size: int = 20

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    chat_model: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    request_timeout_s: int = int(os.getenv("REQUEST_TIMEOUT_S", "30"))
    recall: RecallConfig = field(default_factory=RecallConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)


settings = Settings()
