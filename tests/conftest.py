from __future__ import annotations

import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import psycopg
import pytest

from app.recommend import cache as cache_module


class FakeCacheDb:
    """In-memory stand-in for the recommendation_cache table, driven by the cache module's SQL."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.unavailable = False
        self._ids = itertools.count(1)

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def run(self, sql: str, params: tuple[Any, ...] | None) -> tuple[list[Any], int]:
        if sql == cache_module.CACHE_READ_SQL:
            row = self.rows.get(params[0])
            if row and row["expires_at"] > self.now:
                return [(row["data"],)], 1
            return [], 0
        if sql == cache_module.CACHE_HIT_SQL:
            row = self.rows.get(params[0])
            if row:
                row["hit_count"] += 1
                return [], 1
            return [], 0
        if sql == cache_module.CACHE_UPSERT_SQL:
            key, user_id, data, options, ttl_s = params
            self.rows[key] = {
                "id": next(self._ids),
                "user_id": user_id,
                "data": data,
                "options": options,
                "created_at": self.now,
                "expires_at": self.now + timedelta(seconds=ttl_s),
                "hit_count": 0,
            }
            return [], 1
        if sql == cache_module.EVICT_EXPIRED_SQL:
            expired = [k for k, r in self.rows.items() if r["expires_at"] <= self.now]
            for key in expired:
                del self.rows[key]
            return [], len(expired)
        if sql == cache_module.EVICT_OLDEST_SQL:
            overflow = max(0, len(self.rows) - params[0])
            oldest = sorted(self.rows, key=lambda k: (self.rows[k]["created_at"], self.rows[k]["id"]))[:overflow]
            for key in oldest:
                del self.rows[key]
            return [], len(oldest)
        if sql == cache_module.CACHE_STATS_SQL:
            rows = list(self.rows.values())
            hits = [r["hit_count"] for r in rows]
            created = [r["created_at"] for r in rows]
            return [{
                "total_entries": len(rows),
                "active_entries": sum(1 for r in rows if r["expires_at"] > self.now),
                "total_hits": sum(hits),
                "avg_hit_count": (sum(hits) / len(hits)) if hits else None,
                "max_hit_count": max(hits) if hits else None,
                "oldest_entry": min(created) if created else None,
                "newest_entry": max(created) if created else None,
            }], 1
        raise AssertionError(f"unexpected SQL: {sql}")


class _FakeCursor:
    def __init__(self, db: FakeCacheDb) -> None:
        self._db = db
        self._rows: list[Any] = []
        self.rowcount = -1

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, sql: str, params: tuple[Any, ...] | None = None) -> None:
        self._rows, self.rowcount = self._db.run(sql, params)

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)


class _FakeConn:
    def __init__(self, db: FakeCacheDb) -> None:
        self._db = db

    def cursor(self, **_kwargs):
        return _FakeCursor(self._db)

    async def execute(self, sql: str, params: tuple[Any, ...] | None = None) -> _FakeCursor:
        cur = _FakeCursor(self._db)
        await cur.execute(sql, params)
        return cur


@pytest.fixture
def cache_db(monkeypatch) -> FakeCacheDb:
    db = FakeCacheDb()

    @asynccontextmanager
    async def _fake_get_conn_async():
        if db.unavailable:
            raise psycopg.OperationalError("database is locked")
        yield _FakeConn(db)

    monkeypatch.setattr(cache_module, "get_conn_async", _fake_get_conn_async)
    return db


def article_row(article_id: int, **overrides: Any) -> dict[str, Any]:
    row = {
        "id": article_id,
        "source_id": 1,
        "title": f"Article number {article_id} about markets",
        "description": "",
        "content": "",
        "url": f"https://news.example/{article_id}",
        "pub_date": None,
        "author": "",
        "categories": "",
        "score": 0.0,
        "created_at": datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc),
        "source_name": "Wire",
        "source_category": "general",
    }
    row.update(overrides)
    return row


class FakeCandidateStore:
    """Canned recall/ranking lookups; set ``failures`` to make a method raise."""

    def __init__(self) -> None:
        self.articles: dict[int, dict[str, Any]] = {}
        self.interests: list[dict[str, Any]] = []
        self.similar: list[dict[str, Any]] = []
        self.liked: list[dict[str, Any]] = []
        self.trending: list[dict[str, Any]] = []
        self.preferences: dict[int, float] = {}
        self.failures: set[str] = set()
        self.calls: list[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise psycopg.OperationalError(f"{name} unavailable")

    async def articles_by_ids(self, article_ids, exclude_user):
        self._enter("articles_by_ids")
        return [self.articles[i] for i in article_ids if i in self.articles]

    async def interest_tags(self, user_id, limit):
        self._enter("interest_tags")
        return self.interests[:limit]

    async def articles_by_keywords(self, keywords, exclude_user, limit):
        self._enter("articles_by_keywords")
        lowered = [k.lower() for k in keywords]
        matches = [
            row for row in self.articles.values()
            if any(k in (row.get("categories") or "").lower() for k in lowered)
        ]
        return matches[:limit]

    async def similar_users(self, user_id, min_common_likes, limit):
        self._enter("similar_users")
        return [u for u in self.similar if u["common_likes"] >= min_common_likes][:limit]

    async def liked_by_users(self, user_ids, exclude_user, limit):
        self._enter("liked_by_users")
        return self.liked[:limit]

    async def trending_articles(self, window_days, limit):
        self._enter("trending_articles")
        return self.trending[:limit]

    async def source_preferences(self, user_id, source_ids):
        self._enter("source_preferences")
        return {sid: self.preferences[sid] for sid in source_ids if sid in self.preferences}


class FakeEmbeddings:
    def __init__(self, matches: list[tuple[int, float]] | None = None) -> None:
        self.matches = matches or []
        self.fail = False

    async def personalized_recommendations(self, user_id, limit=20):
        if self.fail:
            raise RuntimeError("vector index offline")
        return self.matches[:limit]


@pytest.fixture
def store() -> FakeCandidateStore:
    return FakeCandidateStore()


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


class SqlRecorder:
    """Records every (sql, params) sent through a patched ``get_conn_async`` and replays canned rows."""

    def __init__(self) -> None:
        self.statements: list[tuple[str, Any]] = []
        self.rows: list[Any] = []

    def run(self, sql: str, params: Any) -> tuple[list[Any], int]:
        self.statements.append((sql, params))
        return list(self.rows), len(self.rows)


@pytest.fixture
def record_sql(monkeypatch):
    def _patch(module) -> SqlRecorder:
        recorder = SqlRecorder()

        @asynccontextmanager
        async def _fake_get_conn_async():
            yield _FakeConn(recorder)

        monkeypatch.setattr(module, "get_conn_async", _fake_get_conn_async)
        return recorder

    return _patch
