from contextlib import asynccontextmanager
from typing import AsyncIterator
import os

import psycopg
from dotenv import load_dotenv

load_dotenv()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sources (
  id BIGSERIAL PRIMARY KEY,
  name TEXT NOT NULL,
  url TEXT UNIQUE NOT NULL,
  category TEXT,
  active BOOLEAN DEFAULT TRUE,
  created_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS articles (
  id BIGSERIAL PRIMARY KEY,
  source_id BIGINT REFERENCES sources(id),
  title TEXT NOT NULL,
  description TEXT,
  content TEXT,
  url TEXT UNIQUE NOT NULL,
  pub_date TIMESTAMPTZ,
  author TEXT,
  categories TEXT,
  score REAL DEFAULT 0,
  created_at TIMESTAMPTZ DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_articles_created ON articles(created_at DESC);

CREATE TABLE IF NOT EXISTS user_actions (
  id BIGSERIAL PRIMARY KEY,
  user_id TEXT NOT NULL DEFAULT 'default',
  article_id BIGINT REFERENCES articles(id),
  action TEXT NOT NULL CHECK (action IN ('like', 'dislike')),
  created_at TIMESTAMPTZ DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_user_actions_user ON user_actions(user_id, article_id);
CREATE INDEX IF NOT EXISTS idx_user_actions_article ON user_actions(article_id);

CREATE TABLE IF NOT EXISTS user_interests (
  id BIGSERIAL PRIMARY KEY,
  user_id TEXT NOT NULL DEFAULT 'default',
  keyword TEXT NOT NULL,
  weight REAL DEFAULT 1.0,
  updated_at TIMESTAMPTZ DEFAULT now(),
  UNIQUE(user_id, keyword)
);

CREATE TABLE IF NOT EXISTS article_embeddings (
  article_id BIGINT PRIMARY KEY REFERENCES articles(id) ON DELETE CASCADE,
  title_embedding TEXT NOT NULL,
  content_embedding TEXT NOT NULL,
  created_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS user_preference_vectors (
  user_id TEXT PRIMARY KEY,
  preference_embedding TEXT NOT NULL,
  keywords TEXT,
  updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS recommendation_cache (
  id BIGSERIAL PRIMARY KEY,
  cache_key TEXT UNIQUE NOT NULL,
  user_id TEXT NOT NULL,
  data TEXT NOT NULL,
  options TEXT,
  created_at TIMESTAMPTZ DEFAULT now(),
  expires_at TIMESTAMPTZ NOT NULL,
  hit_count INT DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_cache_user_expires ON recommendation_cache(user_id, expires_at);
"""


def _conninfo() -> str:
    user = os.environ["POSTGRES_USER"]
    password = os.environ["POSTGRES_PASSWORD"]
    db = os.environ["POSTGRES_DB"]
    host = os.environ["POSTGRES_HOST"]
    port = os.environ["POSTGRES_PORT"]

    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


@asynccontextmanager
async def get_conn_async() -> AsyncIterator[psycopg.AsyncConnection]:
    conn = await psycopg.AsyncConnection.connect(_conninfo())
    try:
        yield conn
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    finally:
        await conn.close()


async def ensure_schema() -> None:
    async with get_conn_async() as conn:
        await conn.execute(SCHEMA_SQL)
