"""Phrase extraction and redacted snippet sampling for free-text answers."""

import re
from collections import Counter

from surveydesk.config import settings

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "how", "i", "in", "is",
        "it", "of", "on", "or", "that", "the", "this", "to", "was", "we", "were", "what", "when",
        "where", "which", "with", "you", "your",
    }
)  # fmt: skip

ELLIPSIS = "…"
REDACTED_EMAIL = "[redacted-email]"
REDACTED_NUMBER = "[redacted-number]"

_WHITESPACE = re.compile(r"\s+")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")
_EMAIL = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
_PHONE = re.compile(r"\b\d{3}[-.\s]?\d{2,3}[-.\s]?\d{4}\b")
_NON_TOKEN = re.compile(r"[^a-z0-9\s]")


def sanitize_snippet(value: str, max_length: int | None = None) -> str:
    limit = max_length or settings.analytics_max_snippet_length
    collapsed = _NON_PRINTABLE.sub(" ", _WHITESPACE.sub(" ", value)).strip()
    redacted = _PHONE.sub(REDACTED_NUMBER, _EMAIL.sub(REDACTED_EMAIL, collapsed))
    if len(redacted) <= limit:
        return redacted
    return redacted[: limit - 1] + ELLIPSIS


def tokenize(value: str) -> list[str]:
    cleaned = _NON_TOKEN.sub(" ", value.lower())
    return [token for token in cleaned.split() if len(token) >= 3 and token not in STOP_WORDS]


def _ranked(counts: Counter) -> list[tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def top_phrases(values: list[str], limit: int | None = None) -> list[dict]:
    """Count unigrams and adjacent bigrams, most frequent first."""
    counts: Counter = Counter()
    for value in values:
        tokens = tokenize(value)
        counts.update(tokens)
        counts.update(f"{left} {right}" for left, right in zip(tokens, tokens[1:]))
    cap = limit or settings.analytics_max_top_phrases
    return [{"phrase": phrase, "count": count} for phrase, count in _ranked(counts)[:cap]]


def sampled_snippets(values: list[str], limit: int | None = None) -> list[dict]:
    counts: Counter = Counter()
    for value in values:
        snippet = sanitize_snippet(value)
        if snippet:
            counts[snippet] += 1
    cap = limit or settings.analytics_max_text_snippets
    return [{"snippet": snippet, "count": count} for snippet, count in _ranked(counts)[:cap]]


def merge_ranked(rows: list[dict], key: str, limit: int) -> list[dict]:
    """Sum per-day ``{key, count}`` rows across days and re-rank them."""
    counts: Counter = Counter()
    for row in rows:
        counts[row[key]] += int(row.get("count", 0))
    return [{key: value, "count": count} for value, count in _ranked(counts)[:limit]]
