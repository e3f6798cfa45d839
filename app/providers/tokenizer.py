import re
from collections import Counter

import nltk
from nltk.corpus import stopwords
from nltk.tokenize import word_tokenize

DEFAULT_STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if", "in", "into",
    "is", "it", "no", "not", "of", "on", "or", "such", "that", "the", "their", "then",
    "there", "these", "they", "this", "to", "was", "will", "with", "said", "says", "new",
}


def _load_stopwords() -> set[str]:
    try:
        nltk.data.find("corpora/stopwords")
    except LookupError:
        try:
            nltk.download("stopwords", quiet=True)
        except Exception:
            return DEFAULT_STOPWORDS

    try:
        return set(stopwords.words("english")) | DEFAULT_STOPWORDS
    except LookupError:
        return DEFAULT_STOPWORDS


def _safe_word_tokenize(text: str) -> list[str]:
    try:
        return word_tokenize(text.lower())
    except LookupError:
        return TOKEN_RE.findall(text.lower())


STOPWORDS = _load_stopwords()
TOKEN_RE = re.compile(r"\b[a-zA-Z][a-zA-Z0-9]{2,}\b")


def term_counts(text: str) -> Counter[str]:
    tokens = _safe_word_tokenize(text or "")
    return Counter(t for t in tokens if TOKEN_RE.fullmatch(t) and t not in STOPWORDS)


def top_terms(text: str, limit: int = 5) -> list[str]:
    counts = term_counts(text)
    # Ties keep first-seen order.
    return [term for term, _ in counts.most_common(limit)]
