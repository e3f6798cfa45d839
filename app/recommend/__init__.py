from .cache import CacheEvictionWorker, RecommendationCache, make_cache_key
from .models import Candidate, RankingScores, RecallSource
from .pagination import PaginationInfo, paginate
from .ranking import RankingEngine
from .recall import RecallEngine, merge_channels
from .store import CandidateStore

__all__ = [
    "CacheEvictionWorker",
    "Candidate",
    "CandidateStore",
    "PaginationInfo",
    "RankingEngine",
    "RankingScores",
    "RecallEngine",
    "RecallSource",
    "RecommendationCache",
    "make_cache_key",
    "merge_channels",
    "paginate",
]
