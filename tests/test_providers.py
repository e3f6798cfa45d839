from __future__ import annotations

import asyncio

import openai
import pytest

from app.batch.runner import importance_score
from app.providers.embedding import cosine_similarity
from app.providers.keywords import KeywordExtractor, clean_html_text, parse_keywords


class _FailingExtractor(KeywordExtractor):
    async def _complete(self, system: str, user: str, max_tokens: int) -> str:
        raise openai.OpenAIError("boom")


class _CannedExtractor(KeywordExtractor):
    def __init__(self, reply: str) -> None:
        super().__init__(model="test-model")
        self.reply = reply

    async def _complete(self, system: str, user: str, max_tokens: int) -> str:
        return self.reply


def test_parse_keywords_strips_code_fences_and_dedupes() -> None:
    assert parse_keywords('```json\n["AI", "Chips", "ai"]\n```') == ["ai", "chips"]
    assert parse_keywords('{"topics": ["ai"]}') is None
    assert parse_keywords("not json at all") is None


def test_clean_html_text_drops_markup() -> None:
    assert clean_html_text("<p>Rates <b>hold</b> &amp; steady</p>") == "Rates hold & steady"


def test_extract_keywords_uses_model_reply_capped_at_five() -> None:
    extractor = _CannedExtractor('["a1", "b2", "c3", "d4", "e5", "f6"]')

    assert asyncio.run(extractor.extract_keywords("anything")) == ["a1", "b2", "c3", "d4", "e5"]


def test_extract_keywords_falls_back_to_frequent_terms() -> None:
    extractor = _FailingExtractor(model="test-model")

    keywords = asyncio.run(extractor.extract_keywords("semiconductor tariffs hit semiconductor exports"))

    assert keywords[0] == "semiconductor"
    assert len(keywords) <= 5


def test_analyze_article_returns_neutral_fallback_on_failure() -> None:
    extractor = _FailingExtractor(model="test-model")

    analysis = asyncio.run(extractor.analyze_article({"title": "t", "description": "<i>Short</i> summary"}))

    assert analysis == {"topics": [], "sentiment": "neutral", "importance": 5, "summary": "Short summary"}


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 2.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0


@pytest.mark.parametrize(
    ("analysis", "expected"),
    [({"importance": 10}, 10.0), ({"importance": 0}, 5.0), ({}, 7.5), ({"importance": "high"}, 7.5), ({"importance": 40}, 10.0)],
)
def test_importance_score(analysis: dict, expected: float) -> None:
    assert importance_score(analysis) == expected
