"""Typed job payloads, one schema per job type.

Payloads are stored as JSON on the job row; the job's ``type`` column is the
tag used to pick the schema when a payload is validated or parsed.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from app.core.exceptions import ValidationError

SampleProfile = Literal["lite", "standard", "full"]


class _PayloadBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    source: str | None = None


class BrandOnboardPayload(_PayloadBase):
    """Kick off processing for pages the crawler already stored."""

    kind: Literal["brand_onboard"] = "brand_onboard"
    raw_page_ids: list[str] = Field(min_length=1)


class NormalizePayload(_PayloadBase):
    kind: Literal["normalize"] = "normalize"
    raw_page_ids: list[str] = Field(min_length=1)


class EmbedPayload(_PayloadBase):
    kind: Literal["embed"] = "embed"
    content_ids: list[str] = Field(min_length=1)
    provider: str | None = None
    chunk_size: int = Field(default=500, ge=10, le=5000)
    chunk_overlap: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def _overlap_smaller_than_chunk(self) -> EmbedPayload:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class SamplePayload(_PayloadBase):
    kind: Literal["sample"] = "sample"
    profile: SampleProfile = "standard"
    models: list[str] | None = None
    prompt_keys: list[str] | None = None


class ScorePayload(_PayloadBase):
    kind: Literal["score"] = "score"
    include_competitor_analysis: bool = False
    scoring_method: str = "geo_v1"


class AssembleReportPayload(_PayloadBase):
    kind: Literal["assemble_report"] = "assemble_report"
    geo_score: int | None = Field(default=None, ge=0, le=100)
    scoring_method: str | None = None


JobPayload = Annotated[
    Union[
        BrandOnboardPayload,
        NormalizePayload,
        EmbedPayload,
        SamplePayload,
        ScorePayload,
        AssembleReportPayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_job_payload(job_type: str, payload: dict[str, Any] | None) -> JobPayload:
    """Validate a raw payload against the schema registered for ``job_type``.

    Raises:
        ValidationError: unknown job type or payload that does not fit the schema.
    """
    data = dict(payload or {})
    declared = data.pop("kind", None)
    if declared is not None and declared != job_type:
        raise ValidationError(
            f"Payload kind {declared!r} does not match job type {job_type!r}",
            {"job_type": job_type},
        )
    try:
        return _payload_adapter.validate_python({**data, "kind": job_type})
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid payload for {job_type} job",
            {
                "job_type": job_type,
                "errors": [
                    {"loc": list(error["loc"]), "msg": error["msg"]}
                    for error in exc.errors(include_url=False)
                ],
            },
        ) from exc


def dump_job_payload(payload: BaseModel) -> dict[str, Any]:
    """Serialize a payload for storage (snake_case, without the tag)."""
    return payload.model_dump(mode="json", exclude={"kind"}, exclude_none=True)
