"""Brand mention detection over a single model response."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Literal

MentionType = Literal["explicit", "implicit", "none"]
Sentiment = Literal["positive", "neutral", "negative"]

POSITIVE_KEYWORDS = (
    "excellent",
    "great",
    "good",
    "best",
    "recommend",
    "reliable",
    "trusted",
    "quality",
    "professional",
    "innovative",
    "leading",
    "top",
    "outstanding",
)
NEGATIVE_KEYWORDS = (
    "bad",
    "poor",
    "terrible",
    "avoid",
    "unreliable",
    "problematic",
    "issues",
    "complaints",
    "disappointing",
    "worst",
    "failed",
)
MAX_SNIPPETS = 3
MAX_CONFIDENCE = 0.9

# Sentence ends at . ! ? followed by whitespace, so "acme.com" stays whole.
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


@dataclass(slots=True)
class BrandMention:
    """Mention analysis of one response."""

    mentioned: bool
    mention_type: MentionType
    mention_count: int
    direct_matches: int
    implicit_matches: int
    sentiment: Sentiment
    confidence: float
    context_snippets: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mentioned": self.mentioned,
            "mentionType": self.mention_type,
            "mentionCount": self.mention_count,
            "directMatches": self.direct_matches,
            "implicitMatches": self.implicit_matches,
            "sentiment": self.sentiment,
            "confidence": self.confidence,
            "contextSnippets": list(self.context_snippets),
        }


@lru_cache(maxsize=512)
def _term_pattern(term: str) -> re.Pattern[str]:
    """Case-insensitive whole-word matcher that tolerates punctuation inside the term."""
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)", re.IGNORECASE)


@lru_cache(maxsize=512)
def _implicit_patterns(brand: str) -> tuple[re.Pattern[str], ...]:
    escaped = re.escape(brand)
    return (
        re.compile(rf"(?<!\w){escaped}['’]s(?!\w)", re.IGNORECASE),
        re.compile(rf"(?<!\w)the\s+{escaped}(?!\w)", re.IGNORECASE),
        re.compile(rf"(?<!\w)at\s+{escaped}(?!\w)", re.IGNORECASE),
        re.compile(rf"(?<!\w)with\s+{escaped}(?!\w)", re.IGNORECASE),
    )


def count_term(text: str, term: str | None) -> int:
    """Whole-word, case-insensitive occurrences of ``term`` in ``text``."""
    if not term or not term.strip():
        return 0
    return len(_term_pattern(term.strip()).findall(text))


def split_sentences(text: str) -> list[str]:
    return [sentence.strip() for sentence in _SENTENCE_BREAK.split(text) if sentence.strip()]


def _classify_sentiment(sentences: list[str]) -> Sentiment:
    positive = sum(count_term(sentence, word) for sentence in sentences for word in POSITIVE_KEYWORDS)
    negative = sum(count_term(sentence, word) for sentence in sentences for word in NEGATIVE_KEYWORDS)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def detect_mention(text: str, brand_name: str, domain: str | None = None) -> BrandMention:
    """Analyse one response for mentions of a brand.

    Direct matches count the brand name and domain; implicit matches count the
    possessive and contextual forms ("Acme's", "the Acme", "at Acme",
    "with Acme"). Sentiment only looks at sentences naming the brand.
    """
    text = text or ""
    brand = (brand_name or "").strip()
    site = (domain or "").strip()

    direct = count_term(text, brand) + count_term(text, site)
    implicit = (
        sum(len(pattern.findall(text)) for pattern in _implicit_patterns(brand)) if brand else 0
    )
    total = direct + implicit
    mentioned = total > 0

    if direct > 0:
        mention_type: MentionType = "explicit"
    elif implicit > 0:
        mention_type = "implicit"
    else:
        mention_type = "none"

    sentences = split_sentences(text)
    brand_sentences = [s for s in sentences if count_term(s, brand)]
    snippets = [s for s in sentences if count_term(s, brand) or count_term(s, site)][:MAX_SNIPPETS]
    sentiment = _classify_sentiment(brand_sentences) if brand_sentences else "neutral"

    confidence = 0.0
    if mentioned:
        confidence = min(
            MAX_CONFIDENCE,
            0.3 + 0.2 * direct + 0.1 * implicit + 0.1 * len(snippets),
        )
        confidence = round(confidence, 4)

    return BrandMention(
        mentioned=mentioned,
        mention_type=mention_type,
        mention_count=total,
        direct_matches=direct,
        implicit_matches=implicit,
        sentiment=sentiment,
        confidence=confidence,
        context_snippets=snippets,
    )
