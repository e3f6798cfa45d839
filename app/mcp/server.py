from __future__ import annotations

from contextlib import asynccontextmanager

from app.recommend.service import RecommendationOptions, recommendation_service

try:
    from fastmcp import FastMCP
except ImportError as exc:  # pragma: no cover - runtime dependency guard
    raise RuntimeError(
        "FastMCP is required to run the MCP server. Install the project dependencies."
    ) from exc


SERVER_TITLE = "NewsRecommender"
SERVER_INSTRUCTIONS = (
    "Use get_recommendations to fetch a user's personalised news feed. "
    "Set page and page_size for pagination."
)


@asynccontextmanager
async def lifespan(_server: FastMCP):
    recommendation_service.eviction.start()
    try:
        yield {}
    finally:
        await recommendation_service.eviction.stop()


mcp = FastMCP(
    name=SERVER_TITLE,
    instructions=SERVER_INSTRUCTIONS,
    version='1',
    lifespan=lifespan,
)


def _bounded(page: int, page_size: int) -> tuple[int, int]:
    return max(1, page), max(1, min(page_size, 100))


def _render(items: list[dict]) -> str:
    lines = ""
    for item in items:
        lines += f"[{item.get('title') or item.get('url')}]({item.get('url')})"
        lines += '\n'
        lines += f"score={float(item.get('final_score') or 0.0):.3f} via {item.get('recall_source') or 'unknown'}"
        if item.get("explanation"):
            lines += f" - {item['explanation']}"
        lines += '\n'
        lines += '\n'
    return lines.strip()


@mcp.tool(name="get_recommendations", description="Get personalised news recommendations for a user.")
async def get_recommendations(user_id: str = "default", page: int = 1, page_size: int = 10) -> str:
    """Return one page of the user's ranked recommendations as markdown."""
    bounded_page, bounded_size = _bounded(page, page_size)
    response = await recommendation_service.get_recommendations(
        user_id,
        RecommendationOptions(page=bounded_page, page_size=bounded_size, enable_explain=True),
    )
    return _render(response.data)


if __name__ == "__main__":
    mcp.run("http")
