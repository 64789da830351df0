"""create brand, job queue, content, sampling and score tables

Revision ID: 5d2e8f1a9c3b
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op
from app.models.base import StringUUID

# revision identifiers, used by Alembic.
revision: str = "5d2e8f1a9c3b"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column("id", StringUUID(), nullable=False)


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _jsonb() -> postgresql.JSONB:
    return postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
    op.create_table(
        "brands",
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("competitors", _jsonb(), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "jobs",
        sa.Column("brand_id", StringUUID(), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'queued'"), nullable=False),
        sa.Column("payload", _jsonb(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("priority", sa.Integer(), server_default=sa.text("5"), nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("max_retries", sa.Integer(), server_default=sa.text("3"), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.Column("retries_from", StringUUID(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("result", _jsonb(), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        sa.CheckConstraint("retry_count <= max_retries", name="ck_jobs_retry_count_within_max"),
        sa.CheckConstraint("priority >= 1 AND priority <= 10", name="ck_jobs_priority_range"),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["retries_from"], ["jobs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("type", "idempotency_key", name="uq_jobs_type_idempotency_key"),
    )
    op.create_index(op.f("ix_jobs_brand_id"), "jobs", ["brand_id"], unique=False)
    op.create_index(op.f("ix_jobs_retries_from"), "jobs", ["retries_from"], unique=False)
    op.create_index(
        "ix_jobs_claim_order",
        "jobs",
        ["status", "type", "priority", "created_at"],
        unique=False,
    )

    op.create_table(
        "job_dependencies",
        sa.Column("job_id", StringUUID(), nullable=False),
        sa.Column("depends_on_job_id", StringUUID(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        _id_column(),
        sa.CheckConstraint("job_id != depends_on_job_id", name="ck_job_dependencies_no_self"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["depends_on_job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "depends_on_job_id", name="uq_job_dependencies_edge"),
    )
    op.create_index(op.f("ix_job_dependencies_job_id"), "job_dependencies", ["job_id"], unique=False)
    op.create_index(
        op.f("ix_job_dependencies_depends_on_job_id"),
        "job_dependencies",
        ["depends_on_job_id"],
        unique=False,
    )

    op.create_table(
        "job_logs",
        sa.Column("job_id", StringUUID(), nullable=False),
        sa.Column("level", sa.String(length=10), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", _jsonb(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        _id_column(),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_job_logs_job_id"), "job_logs", ["job_id"], unique=False)

    op.create_table(
        "raw_pages",
        sa.Column("brand_id", StringUUID(), nullable=False),
        sa.Column("url", sa.String(length=2000), nullable=False),
        sa.Column("storage_path", sa.String(length=1000), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_raw_pages_brand_id"), "raw_pages", ["brand_id"], unique=False)

    op.create_table(
        "page_contents",
        sa.Column("brand_id", StringUUID(), nullable=False),
        sa.Column("raw_page_id", StringUUID(), nullable=False),
        sa.Column("url", sa.String(length=2000), nullable=False),
        sa.Column("title", sa.String(length=1000), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("main_content", sa.Text(), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False),
        sa.Column("headings", _jsonb(), nullable=True),
        sa.Column("links", _jsonb(), nullable=True),
        sa.Column("images", _jsonb(), nullable=True),
        sa.Column("meta_tags", _jsonb(), nullable=True),
        sa.Column("structured_data", _jsonb(), nullable=True),
        sa.Column("extraction_metadata", _jsonb(), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["raw_page_id"], ["raw_pages.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_page_contents_brand_id"), "page_contents", ["brand_id"], unique=False)
    op.create_index(op.f("ix_page_contents_raw_page_id"), "page_contents", ["raw_page_id"], unique=False)

    op.create_table(
        "claims",
        sa.Column("content_id", StringUUID(), nullable=False),
        sa.Column("brand_id", StringUUID(), nullable=False),
        sa.Column("claim_text", sa.Text(), nullable=False),
        sa.Column("claim_type", sa.String(length=30), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("source_selector", sa.String(length=255), nullable=True),
        sa.Column("extractor", sa.String(length=50), nullable=False),
        _id_column(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(["content_id"], ["page_contents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_claims_content_id"), "claims", ["content_id"], unique=False)
    op.create_index(op.f("ix_claims_brand_id"), "claims", ["brand_id"], unique=False)

    op.create_table(
        "content_chunks",
        sa.Column("content_id", StringUUID(), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("chunk_text", sa.Text(), nullable=False),
        sa.Column("token_count", sa.Integer(), nullable=False),
        sa.Column("chunk_type", sa.String(length=20), nullable=False),
        _id_column(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(["content_id"], ["page_contents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_content_chunks_content_id"), "content_chunks", ["content_id"], unique=False)

    op.create_table(
        "embeddings",
        sa.Column("chunk_id", StringUUID(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("model_name", sa.String(length=100), nullable=False),
        sa.Column("dimensions", sa.Integer(), nullable=False),
        sa.Column("vector", _jsonb(), nullable=False),
        sa.Column("cost", sa.Float(), nullable=False),
        _id_column(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(["chunk_id"], ["content_chunks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chunk_id"),
    )

    op.create_table(
        "llm_reports",
        sa.Column("brand_id", StringUUID(), nullable=False),
        sa.Column("job_id", StringUUID(), nullable=True),
        sa.Column("model_name", sa.String(length=100), nullable=False),
        sa.Column("prompt_key", sa.String(length=50), nullable=False),
        sa.Column("intent", sa.String(length=50), nullable=True),
        sa.Column("prompt_text", sa.Text(), nullable=False),
        sa.Column("response_text", sa.Text(), nullable=False),
        sa.Column("tokens_used", sa.Integer(), nullable=False),
        sa.Column("cost_estimate", sa.Float(), nullable=False),
        sa.Column("paraphrase_index", sa.Integer(), nullable=False),
        sa.Column("score_value", sa.Integer(), nullable=True),
        sa.Column("metadata", _jsonb(), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_llm_reports_brand_id"), "llm_reports", ["brand_id"], unique=False)
    op.create_index(op.f("ix_llm_reports_job_id"), "llm_reports", ["job_id"], unique=False)

    op.create_table(
        "brand_scores",
        sa.Column("brand_id", StringUUID(), nullable=False),
        sa.Column("job_id", StringUUID(), nullable=True),
        sa.Column("overall_score", sa.Integer(), nullable=False),
        sa.Column("presence_score", sa.Integer(), nullable=False),
        sa.Column("accuracy_score", sa.Integer(), nullable=False),
        sa.Column("salience_score", sa.Integer(), nullable=False),
        sa.Column("authority_score", sa.Integer(), nullable=False),
        sa.Column("freshness_score", sa.Integer(), nullable=False),
        sa.Column("robustness_score", sa.Integer(), nullable=False),
        sa.Column("breakdown_data", _jsonb(), nullable=False),
        sa.Column("competitor_comparison", _jsonb(), nullable=True),
        sa.Column("evidence_pointers", _jsonb(), nullable=False),
        sa.Column("metadata", _jsonb(), nullable=True),
        sa.Column("scoring_method", sa.String(length=50), nullable=False),
        _id_column(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_brand_scores_brand_id"), "brand_scores", ["brand_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_brand_scores_brand_id"), table_name="brand_scores")
    op.drop_table("brand_scores")

    op.drop_index(op.f("ix_llm_reports_job_id"), table_name="llm_reports")
    op.drop_index(op.f("ix_llm_reports_brand_id"), table_name="llm_reports")
    op.drop_table("llm_reports")

    op.drop_table("embeddings")

    op.drop_index(op.f("ix_content_chunks_content_id"), table_name="content_chunks")
    op.drop_table("content_chunks")

    op.drop_index(op.f("ix_claims_brand_id"), table_name="claims")
    op.drop_index(op.f("ix_claims_content_id"), table_name="claims")
    op.drop_table("claims")

    op.drop_index(op.f("ix_page_contents_raw_page_id"), table_name="page_contents")
    op.drop_index(op.f("ix_page_contents_brand_id"), table_name="page_contents")
    op.drop_table("page_contents")

    op.drop_index(op.f("ix_raw_pages_brand_id"), table_name="raw_pages")
    op.drop_table("raw_pages")

    op.drop_index(op.f("ix_job_logs_job_id"), table_name="job_logs")
    op.drop_table("job_logs")

    op.drop_index(op.f("ix_job_dependencies_depends_on_job_id"), table_name="job_dependencies")
    op.drop_index(op.f("ix_job_dependencies_job_id"), table_name="job_dependencies")
    op.drop_table("job_dependencies")

    op.drop_index("ix_jobs_claim_order", table_name="jobs")
    op.drop_index(op.f("ix_jobs_retries_from"), table_name="jobs")
    op.drop_index(op.f("ix_jobs_brand_id"), table_name="jobs")
    op.drop_table("jobs")

    op.drop_table("brands")
