"""Unit tests for brand mention detection."""

from __future__ import annotations

import pytest

from app.services.scoring.mentions import count_term, detect_mention, split_sentences


def test_possessive_recommendation_is_explicit_positive() -> None:
    mention = detect_mention("I recommend Acme's excellent service.", "Acme", "acme.com")

    assert mention.mentioned is True
    assert mention.mention_type == "explicit"
    assert mention.sentiment == "positive"
    assert mention.direct_matches == 1
    assert mention.implicit_matches == 1
    assert mention.confidence == pytest.approx(0.7)
    assert mention.context_snippets == ["I recommend Acme's excellent service."]


def test_no_mention_has_zero_confidence() -> None:
    mention = detect_mention("Nothing relevant here. Try another company.", "Acme", "acme.com")

    assert mention.mentioned is False
    assert mention.mention_type == "none"
    assert mention.mention_count == 0
    assert mention.confidence == 0.0
    assert mention.sentiment == "neutral"
    assert mention.context_snippets == []


def test_matching_is_case_insensitive_and_whole_word() -> None:
    assert count_term("ACME builds rockets. acme sells anvils.", "Acme") == 2
    assert count_term("Acmeville is a town.", "Acme") == 0
    assert count_term("Visit acme.com today.", "acme.com") == 1


def test_domain_only_mention_counts_as_explicit() -> None:
    mention = detect_mention("You can read more on acme.com for details.", "Zenith", "acme.com")

    assert mention.mentioned is True
    assert mention.mention_type == "explicit"
    assert mention.direct_matches == 1


def test_negative_sentiment_outweighs_positive() -> None:
    text = "Acme has poor support and many complaints. Some say Acme is good."
    mention = detect_mention(text, "Acme")

    assert mention.sentiment == "negative"


def test_sentiment_ignores_sentences_without_brand() -> None:
    text = "Acme is a company. Competitors are excellent and the best."
    mention = detect_mention(text, "Acme")

    assert mention.sentiment == "neutral"


def test_snippets_capped_at_three() -> None:
    text = " ".join(f"Acme fact number {i}." for i in range(6))
    mention = detect_mention(text, "Acme")

    assert len(mention.context_snippets) == 3


def test_confidence_capped() -> None:
    text = "Acme Acme Acme. Acme again. With Acme, the Acme team works at Acme."
    mention = detect_mention(text, "Acme")

    assert mention.confidence == pytest.approx(0.9)


@pytest.mark.parametrize("occurrences", [1, 2, 3, 5, 8])
def test_mention_count_grows_with_occurrences(occurrences: int) -> None:
    fewer = detect_mention(" ".join(["Acme works."] * occurrences), "Acme")
    more = detect_mention(" ".join(["Acme works."] * (occurrences + 1)), "Acme")

    assert more.mention_count >= fewer.mention_count
    assert more.mention_count == occurrences + 1


def test_split_sentences_keeps_domains_whole() -> None:
    assert split_sentences("See acme.com now! Is it good? Yes.") == [
        "See acme.com now!",
        "Is it good?",
        "Yes.",
    ]


def test_to_dict_uses_camel_case_keys() -> None:
    payload = detect_mention("Acme is great.", "Acme").to_dict()

    assert payload["mentionType"] == "explicit"
    assert payload["mentionCount"] == 1
    assert payload["contextSnippets"] == ["Acme is great."]
