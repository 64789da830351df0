"""Stage worker registry keyed by job type."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from app.core.db_kernel import SessionFactory
from app.models.job import JOB_TYPES
from app.services.stages.assemble_report import AssembleReportStage
from app.services.stages.base_stage import BaseStage
from app.services.stages.brand_onboard import BrandOnboardStage
from app.services.stages.embed import EmbedStage
from app.services.stages.normalize import NormalizeStage
from app.services.stages.sample import SampleStage
from app.services.stages.score import ScoreStage

if TYPE_CHECKING:
    from app.services.job_queue import JobQueueManager

STAGE_CLASSES: dict[str, type[BaseStage]] = {
    "brand_onboard": BrandOnboardStage,
    "normalize": NormalizeStage,
    "embed": EmbedStage,
    "sample": SampleStage,
    "score": ScoreStage,
    "assemble_report": AssembleReportStage,
}


def build_stage_workers(
    job_types: Sequence[str] | None = None,
    *,
    queue: JobQueueManager | None = None,
    session_factory: SessionFactory | None = None,
) -> dict[str, BaseStage]:
    """Instantiate one worker per requested job type (all types by default)."""
    selected = list(dict.fromkeys(job_types or JOB_TYPES))
    unknown = [job_type for job_type in selected if job_type not in STAGE_CLASSES]
    if unknown:
        raise ValueError(f"Unknown job types: {', '.join(unknown)}")
    return {
        job_type: STAGE_CLASSES[job_type](queue=queue, session_factory=session_factory)
        for job_type in selected
    }
