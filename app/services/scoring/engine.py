"""GeoScore computation from analysed model responses."""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from app.services.scoring.mentions import BrandMention, count_term

SCORING_METHOD = "geo_v1"

COMPONENT_WEIGHTS: dict[str, float] = {
    "presence": 0.25,
    "accuracy": 0.20,
    "salience": 0.20,
    "authority": 0.15,
    "freshness": 0.10,
    "robustness": 0.10,
}

# Recency of model knowledge is not measured yet.
FRESHNESS_PLACEHOLDER = 75

SENTIMENT_QUALITY = {"positive": 1.0, "neutral": 0.7, "negative": 0.3}
MAX_EVIDENCE_POINTERS = 5
MIN_COMPETITOR_RATE = 0.01

INTENT_BY_PROMPT = {
    "def_01": "general",
    "local_01": "local_search",
    "comp_01": "comparison",
    "tech_01": "technical",
    "brand_01": "reputation",
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


@dataclass(slots=True)
class ScoredResponse:
    """One model response plus its mention analysis."""

    response_id: str
    model_name: str
    prompt_key: str
    text: str
    mention: BrandMention
    intent: str | None = None

    @property
    def resolved_intent(self) -> str:
        return self.intent or INTENT_BY_PROMPT.get(self.prompt_key, "general")


@dataclass(slots=True)
class ScoreComponents:
    presence: int
    accuracy: int
    salience: int
    authority: int
    freshness: int
    robustness: int

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in COMPONENT_WEIGHTS}

    def overall(self) -> int:
        return weighted_overall(self.as_dict())


@dataclass(slots=True)
class GeoScoreResult:
    overall: int
    components: ScoreComponents
    breakdown: dict[str, dict[str, int]]
    competitor_comparison: dict[str, Any] | None
    evidence_pointers: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)


def _mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0


def _population_std(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


def _mention_rates(responses: Sequence[ScoredResponse], key: str) -> dict[str, float]:
    totals: dict[str, int] = defaultdict(int)
    hits: dict[str, int] = defaultdict(int)
    for response in responses:
        group = response.resolved_intent if key == "intent" else getattr(response, key)
        totals[group] += 1
        if response.mention.mentioned:
            hits[group] += 1
    return {group: hits[group] / totals[group] for group in totals}


def compute_components(responses: Sequence[ScoredResponse]) -> ScoreComponents:
    total = len(responses)
    mentioned = [r.mention for r in responses if r.mention.mentioned]

    presence = (len(mentioned) / total) * 100 if total else 0.0

    accuracy = salience = authority = 0.0
    if mentioned:
        count = len(mentioned)
        positive_rate = sum(1 for m in mentioned if m.sentiment == "positive") / count
        neutral_rate = sum(1 for m in mentioned if m.sentiment == "neutral") / count
        average_confidence = _mean(m.confidence for m in mentioned)
        accuracy = min(100.0, (positive_rate * 100 + neutral_rate * 70) * average_confidence)

        explicit_rate = sum(1 for m in mentioned if m.mention_type == "explicit") / count
        average_mentions = _mean(m.mention_count for m in mentioned)
        salience = min(100.0, explicit_rate * 80 + min(average_mentions, 3) * 10)

        snippet_rate = sum(1 for m in mentioned if m.context_snippets) / count
        sentiment_quality = _mean(SENTIMENT_QUALITY[m.sentiment] for m in mentioned)
        authority = snippet_rate * 50 + sentiment_quality * 50

    model_spread = _population_std(list(_mention_rates(responses, "model_name").values()))
    prompt_spread = _population_std(list(_mention_rates(responses, "prompt_key").values()))
    robustness = max(0.0, 100 - (model_spread + prompt_spread) * 200)

    return ScoreComponents(
        presence=clamp_score(presence),
        accuracy=clamp_score(accuracy),
        salience=clamp_score(salience),
        authority=clamp_score(authority),
        freshness=FRESHNESS_PLACEHOLDER,
        robustness=clamp_score(robustness),
    )


def compare_competitors(
    responses: Sequence[ScoredResponse],
    competitors: Sequence[str],
) -> dict[str, Any]:
    """Brand mention rate against each competitor's rate over the same responses."""
    total = len(responses)
    brand_rate = sum(1 for r in responses if r.mention.mentioned) / total if total else 0.0
    comparison: dict[str, Any] = {}
    for competitor in competitors:
        name = competitor.strip()
        if not name:
            continue
        hits = sum(1 for r in responses if count_term(r.text, name))
        rate = hits / total if total else 0.0
        comparison[name] = {
            "mention_rate": round_half_up(rate * 100),
            "ratio": round_half_up(brand_rate / max(rate, MIN_COMPETITOR_RATE) * 50),
        }
    return {"brand_mention_rate": round_half_up(brand_rate * 100), "competitors": comparison}


def evidence_pointers(responses: Sequence[ScoredResponse]) -> list[str]:
    ranked = sorted(
        (r for r in responses if r.mention.mentioned),
        key=lambda r: r.mention.confidence,
        reverse=True,
    )
    return [f"llm_response:{r.response_id}" for r in ranked[:MAX_EVIDENCE_POINTERS]]


def compute_geo_score(
    responses: Sequence[ScoredResponse],
    *,
    competitors: Sequence[str] | None = None,
    scoring_method: str = SCORING_METHOD,
) -> GeoScoreResult:
    """Aggregate analysed responses into a GeoScore.

    Passing ``competitors`` (even an empty list) adds the competitor
    comparison; ``None`` skips it.
    """
    components = compute_components(responses)

    breakdown = {
        "by_model": {k: round_half_up(v * 100) for k, v in _mention_rates(responses, "model_name").items()},
        "by_prompt": {k: round_half_up(v * 100) for k, v in _mention_rates(responses, "prompt_key").items()},
        "by_intent": {k: round_half_up(v * 100) for k, v in _mention_rates(responses, "intent").items()},
    }

    mentioned = [r.mention for r in responses if r.mention.mentioned]
    confidences = [m.confidence for m in mentioned]
    consistency = clamp_score((1 - _population_std(confidences)) * 100) if confidences else 0

    metadata = {
        "total_samples": len(responses),
        "mentioned_samples": len(mentioned),
        "mention_rate": round(len(mentioned) / len(responses), 4) if responses else 0.0,
        "average_confidence": round(_mean(confidences), 4),
        "consistency_score": consistency,
        "scoring_method": scoring_method,
        "weights": dict(COMPONENT_WEIGHTS),
    }

    return GeoScoreResult(
        overall=components.overall(),
        components=components,
        breakdown=breakdown,
        competitor_comparison=(
            compare_competitors(responses, competitors) if competitors is not None else None
        ),
        evidence_pointers=evidence_pointers(responses),
        metadata=metadata,
    )


def response_score(mention: BrandMention) -> int:
    """Per-response score stored on each mentioned response."""
    return round_half_up(mention.confidence * 100)


def weighted_overall(components: Mapping[str, float]) -> int:
    return clamp_score(sum(components[name] * weight for name, weight in COMPONENT_WEIGHTS.items()))
