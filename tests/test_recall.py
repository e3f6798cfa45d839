import asyncio
from dataclasses import replace

from conftest import article_row

from app.common.config import RecallConfig
from app.recommend import store as store_module
from app.recommend.models import Candidate, RecallSource
from app.recommend.recall import RecallEngine, matched_interest_weight, merge_channels
from app.recommend.store import CandidateStore, _like_pattern


def test_merge_keeps_first_channel_score_and_unions_sources() -> None:
    vector = [Candidate(id=1, similarity_score=0.9), Candidate(id=2, similarity_score=0.4)]
    tag = [Candidate(id=2, tag_score=3.0), Candidate(id=3, tag_score=1.0)]
    trending = [Candidate(id=1, trending_score=6.0)]

    merged = merge_channels([
        (RecallSource.VECTOR, vector),
        (RecallSource.TAG, tag),
        (RecallSource.TRENDING, trending),
    ])

    assert [c.id for c in merged] == [1, 2, 3]
    first, second, third = merged
    assert first.recall_source == "vector,trending"
    assert first.recall_score == 0.9
    assert first.trending_score == 6.0
    assert second.recall_source == "vector,tag"
    assert second.recall_score == 0.4
    assert second.tag_score == 3.0
    assert third.recall_source == "tag"
    assert third.recall_score == 1.0


def test_merge_of_empty_channels_is_empty() -> None:
    assert merge_channels([(RecallSource.VECTOR, []), (RecallSource.TAG, [])]) == []


def test_matched_interest_weight_is_case_insensitive() -> None:
    interests = [{"keyword": "Climate", "weight": 2.5}, {"keyword": "energy", "weight": None}]

    assert matched_interest_weight("climate,Energy,policy", interests) == 3.5
    assert matched_interest_weight("", interests) == 0.0


def test_cold_start_user_gets_trending_only(store, embeddings) -> None:
    store.trending = [article_row(7, trending_score=4), article_row(8, trending_score=2)]
    engine = RecallEngine(RecallConfig(), store, embeddings)

    candidates = asyncio.run(engine.recall("newcomer"))

    assert [c.id for c in candidates] == [7, 8]
    assert {c.recall_source for c in candidates} == {"trending"}
    assert candidates[0].recall_score == 4.0


def test_failing_channel_does_not_sink_the_others(store, embeddings) -> None:
    store.interests = [{"keyword": "chips", "weight": 1.0}]
    store.articles = {4: article_row(4, categories="chips,trade")}
    store.trending = [article_row(9, trending_score=1)]
    store.failures = {"similar_users"}
    embeddings.fail = True
    engine = RecallEngine(RecallConfig(), store, embeddings)

    candidates = asyncio.run(engine.recall("alice"))

    assert [(c.id, c.recall_source) for c in candidates] == [(4, "tag"), (9, "trending")]
    assert candidates[0].tag_score == 1.0


def test_vector_recall_keeps_similarity_order(store, embeddings) -> None:
    store.articles = {1: article_row(1), 2: article_row(2), 3: article_row(3)}
    embeddings.matches = [(3, 0.91), (1, 0.55), (2, 0.12)]
    engine = RecallEngine(RecallConfig(), store, embeddings)

    candidates = asyncio.run(engine.vector_recall("alice", 10))

    assert [c.id for c in candidates] == [3, 1, 2]
    assert candidates[0].similarity_score == 0.91


def test_collaborative_recall_scores_by_like_count(store, embeddings) -> None:
    store.similar = [{"user_id": "bob", "common_likes": 3}, {"user_id": "eve", "common_likes": 1}]
    store.liked = [article_row(5, like_count=2)]
    engine = RecallEngine(RecallConfig(), store, embeddings)

    candidates = asyncio.run(engine.collaborative_recall("alice", 10))

    assert [(c.id, c.collab_score) for c in candidates] == [(5, 2.0)]


def test_disabled_channel_is_not_queried(store, embeddings) -> None:
    config = RecallConfig()
    config = replace(config, trending_recall=replace(config.trending_recall, enabled=False))
    store.trending = [article_row(9, trending_score=1)]
    engine = RecallEngine(config, store, embeddings)

    assert asyncio.run(engine.recall("alice")) == []
    assert "trending_articles" not in store.calls


def test_store_methods_send_expected_sql_and_parameters(record_sql) -> None:
    recorder = record_sql(store_module)
    candidate_store = CandidateStore()

    async def _scenario() -> None:
        await candidate_store.articles_by_ids([3, 1], "alice")
        await candidate_store.interest_tags("alice", 10)
        await candidate_store.articles_by_keywords(["AI", "50%_off"], "alice", 150)
        await candidate_store.similar_users("alice", 2, 10)
        await candidate_store.liked_by_users(["bob", "eve"], "alice", 100)
        await candidate_store.trending_articles(7, 50)
        await candidate_store.source_preferences("alice", [4, 9])

    asyncio.run(_scenario())

    assert recorder.statements == [
        (store_module.ARTICLES_BY_ID_SQL, ([3, 1], "alice")),
        (store_module.INTEREST_TAGS_SQL, ("alice", 10)),
        (store_module.TAG_RECALL_SQL, (["%AI%", "%50\\%\\_off%"], "alice", 150)),
        (store_module.SIMILAR_USERS_SQL, ("alice", "alice", 2, 10)),
        (store_module.COLLABORATIVE_RECALL_SQL, (["bob", "eve"], "alice", 100)),
        (store_module.TRENDING_RECALL_SQL, (7, 50)),
        (store_module.SOURCE_PREFERENCES_SQL, ("alice", [4, 9])),
    ]


def test_store_skips_queries_for_empty_inputs(record_sql) -> None:
    recorder = record_sql(store_module)
    candidate_store = CandidateStore()

    async def _scenario():
        return (
            await candidate_store.articles_by_ids([], "alice"),
            await candidate_store.articles_by_keywords([], "alice", 10),
            await candidate_store.liked_by_users([], "alice", 10),
            await candidate_store.source_preferences("alice", []),
        )

    assert asyncio.run(_scenario()) == ([], [], [], {})
    assert recorder.statements == []


def test_source_preferences_map_rows_by_source(record_sql) -> None:
    recorder = record_sql(store_module)
    recorder.rows = [{"source_id": 4, "preference": 1.5}, {"source_id": 9, "preference": None}]

    preferences = asyncio.run(CandidateStore().source_preferences("alice", [4, 9, 11]))

    assert preferences == {4: 1.5, 9: 0.0}


def test_like_pattern_escapes_wildcards() -> None:
    assert _like_pattern("ai") == "%ai%"
    assert _like_pattern("50%") == "%50\\%%"
    assert _like_pattern("a_b") == "%a\\_b%"
    assert _like_pattern("c:\\x") == "%c:\\\\x%"


def test_recall_queries_exclude_acted_articles_and_encode_scoring_rules() -> None:
    for sql in (store_module.ARTICLES_BY_ID_SQL, store_module.TAG_RECALL_SQL, store_module.COLLABORATIVE_RECALL_SQL):
        assert store_module.NOT_ACTED_FILTER in sql

    trending = store_module.TRENDING_RECALL_SQL
    assert "make_interval(days => %s)" in trending
    assert "HAVING COUNT(ua.id) > 0" in trending
    assert "WHEN 'like' THEN 2" in trending
    assert "WHEN 'dislike' THEN -1" in trending

    similar = store_module.SIMILAR_USERS_SQL
    assert "HAVING COUNT(DISTINCT u1.article_id) >= %s" in similar
    assert "ORDER BY common_likes DESC" in similar

    assert "THEN 1.0 ELSE -0.5" in store_module.SOURCE_PREFERENCES_SQL
