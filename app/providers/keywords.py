from __future__ import annotations

import json
import logging
import re
from html import unescape
from typing import Any

import httpx
import openai
from bs4 import BeautifulSoup

from app.common.config import settings
from app.providers.tokenizer import top_terms

logger = logging.getLogger(__name__)

KEYWORD_PROMPT = "Extract 3-5 key topics/keywords from the text. Return only a JSON array of strings."

ANALYSIS_PROMPT = """Analyze the following news article and extract key information.

Title: {title}
Description: {description}
Content: {content}...

Respond with ONLY a JSON object:
{{"topics": [<max 5 keywords>], "sentiment": "positive|negative|neutral", "importance": <0-10>, "summary": "<max 50 words>"}}"""


def clean_html_text(value: str) -> str:
    if not value:
        return ""
    return BeautifulSoup(unescape(value), "html.parser").get_text(" ", strip=True)


def _strip_code_fence(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r"^```(?:json)?\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    return text.strip()


def parse_keywords(text: str) -> list[str] | None:
    try:
        payload = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError:
        logger.warning("failed to parse keyword response: %s", (text or "")[:200])
        return None
    if not isinstance(payload, list):
        return None
    keywords: list[str] = []
    for item in payload:
        keyword = str(item).strip().lower()
        if keyword and keyword not in keywords:
            keywords.append(keyword)
    return keywords


class KeywordExtractor:
    def __init__(self, *, client: openai.AsyncOpenAI | None = None, model: str | None = None) -> None:
        self._client = client
        self.model = model or settings.chat_model

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=settings.openai_api_key,
                http_client=httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout_s)),
            )
        return self._client

    async def _complete(self, system: str, user: str, max_tokens: int) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            temperature=0.3,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return response.choices[0].message.content or ""

    async def extract_keywords(self, text: str) -> list[str]:
        """Topic keywords for ``text``; falls back to frequent terms when the LLM is unavailable."""
        text = clean_html_text(text)
        if not text:
            return []
        try:
            keywords = parse_keywords(await self._complete(KEYWORD_PROMPT, text[:1000], 100))
        except (openai.OpenAIError, httpx.HTTPError) as exc:
            logger.warning("keyword extraction failed, using term fallback: %s", exc)
            keywords = None
        if keywords is None:
            keywords = top_terms(text, limit=5)
        return keywords[:5]

    async def analyze_article(self, article: dict[str, Any]) -> dict[str, Any]:
        description = clean_html_text(article.get("description") or "")
        fallback = {
            "topics": [],
            "sentiment": "neutral",
            "importance": 5,
            "summary": description[:100],
        }
        prompt = ANALYSIS_PROMPT.format(
            title=article.get("title") or "",
            description=description,
            content=clean_html_text(article.get("content") or "")[:1000],
        )
        try:
            raw = await self._complete("You are a news analysis assistant. Respond only with valid JSON.", prompt, 300)
            analysis = json.loads(_strip_code_fence(raw))
        except (openai.OpenAIError, httpx.HTTPError, json.JSONDecodeError):
            logger.exception("article analysis failed title=%s", (article.get("title") or "")[:60])
            return fallback
        if not isinstance(analysis, dict):
            return fallback
        return {**fallback, **analysis}


keyword_extractor = KeywordExtractor()
