"""Unit tests for typed job payload validation."""

from __future__ import annotations

import pytest

from app.core.exceptions import ValidationError
from app.schemas.payloads import (
    EmbedPayload,
    SamplePayload,
    dump_job_payload,
    parse_job_payload,
)


def test_parse_job_payload_accepts_camel_case_and_defaults() -> None:
    payload = parse_job_payload("embed", {"contentIds": ["c1"], "chunkSize": 200})

    assert isinstance(payload, EmbedPayload)
    assert payload.content_ids == ["c1"]
    assert payload.chunk_size == 200
    assert payload.chunk_overlap == 50


def test_parse_job_payload_rejects_mismatched_kind() -> None:
    with pytest.raises(ValidationError, match="does not match"):
        parse_job_payload("normalize", {"kind": "embed", "raw_page_ids": ["p1"]})


def test_parse_job_payload_reports_field_errors() -> None:
    with pytest.raises(ValidationError) as exc_info:
        parse_job_payload("normalize", {"raw_page_ids": []})

    errors = exc_info.value.details["errors"]
    assert errors and errors[0]["loc"][-1] in {"raw_page_ids", "rawPageIds"}


def test_parse_job_payload_rejects_unknown_job_type() -> None:
    with pytest.raises(ValidationError):
        parse_job_payload("crawl", {})


def test_embed_payload_overlap_must_be_smaller_than_chunk() -> None:
    with pytest.raises(ValidationError):
        parse_job_payload("embed", {"content_ids": ["c1"], "chunk_size": 100, "chunk_overlap": 100})


def test_sample_payload_profile_is_restricted() -> None:
    assert isinstance(parse_job_payload("sample", {}), SamplePayload)
    with pytest.raises(ValidationError):
        parse_job_payload("sample", {"profile": "huge"})


def test_dump_job_payload_stores_snake_case_without_tag() -> None:
    payload = parse_job_payload("score", {"includeCompetitorAnalysis": True, "source": "sample"})

    assert dump_job_payload(payload) == {
        "include_competitor_analysis": True,
        "scoring_method": "geo_v1",
        "source": "sample",
    }


def test_unknown_fields_are_ignored() -> None:
    payload = parse_job_payload("assemble_report", {"geo_score": 71, "legacy": "x"})

    assert dump_job_payload(payload) == {"geo_score": 71}
