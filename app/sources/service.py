from __future__ import annotations

import logging
from datetime import datetime

from psycopg.rows import dict_row
from pydantic import BaseModel

from app.common.db import get_conn_async

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "general"

ACTIVE_SOURCES_SQL = """
SELECT id, name, url, category, active, created_at
FROM sources
WHERE active
ORDER BY name ASC, id ASC
"""

UPSERT_SOURCE_SQL = """
INSERT INTO sources(name, url, category)
VALUES (%s, %s, %s)
ON CONFLICT (url) DO UPDATE SET
  name = EXCLUDED.name,
  category = EXCLUDED.category,
  active = TRUE
RETURNING id
"""


class Source(BaseModel):
    id: int
    name: str
    url: str
    category: str | None = None
    active: bool = True
    created_at: datetime | None = None


class SourceService:
    async def list_active(self) -> list[Source]:
        async with get_conn_async() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(ACTIVE_SOURCES_SQL)
                rows = await cur.fetchall()
        return [Source(**row) for row in rows]

    async def add_source(self, name: str, url: str, category: str | None = None) -> int:
        """Register a feed source, reactivating it when the URL is already known."""
        async with get_conn_async() as conn:
            cur = await conn.execute(UPSERT_SOURCE_SQL, (name, url, category or DEFAULT_CATEGORY))
            row = await cur.fetchone()
        logger.info("registered source id=%s url=%s", row[0], url)
        return int(row[0])


source_service = SourceService()
