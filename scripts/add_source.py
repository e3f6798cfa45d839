#!/usr/bin/env python3
import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.common.db import ensure_schema
from app.sources.service import DEFAULT_CATEGORY, source_service


async def add_source(name: str, url: str, category: str) -> int:
    await ensure_schema()
    return await source_service.add_source(name, url, category)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Connect to Postgres and register an RSS source."
    )
    parser.add_argument("name", help="Display name of the source")
    parser.add_argument("url", help="Feed URL")
    parser.add_argument("--category", default=DEFAULT_CATEGORY, help="Source category")
    args = parser.parse_args()

    source_id = asyncio.run(add_source(args.name, args.url, args.category))
    print(f"Source registered: id={source_id} url={args.url}")


if __name__ == "__main__":
    main()
