"""Image generation job queue table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "image_generation_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("subject_ref", sa.String(), nullable=True),
        sa.Column("subject_name", sa.String(), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("result_ref", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "ix_image_generation_jobs_subject_ref",
        "image_generation_jobs",
        ["subject_ref"],
    )
    op.create_index("ix_image_generation_jobs_status", "image_generation_jobs", ["status"])
    op.create_index(
        "idx_image_jobs_status_created",
        "image_generation_jobs",
        ["status", "created_at"],
    )
    op.create_index(
        "idx_image_jobs_status_updated",
        "image_generation_jobs",
        ["status", "updated_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_image_jobs_status_updated", table_name="image_generation_jobs")
    op.drop_index("idx_image_jobs_status_created", table_name="image_generation_jobs")
    op.drop_index("ix_image_generation_jobs_status", table_name="image_generation_jobs")
    op.drop_index("ix_image_generation_jobs_subject_ref", table_name="image_generation_jobs")
    op.drop_table("image_generation_jobs")
