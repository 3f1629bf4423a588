"""SQLModel ORM tables for job and subject storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class ImageJob(SQLModel, table=True):
    __tablename__ = "image_generation_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_image_jobs_status_created", "status", "created_at"),
        Index("idx_image_jobs_status_updated", "status", "updated_at"),
    )

    job_id: str = Field(primary_key=True)
    subject_ref: str | None = Field(default=None, index=True)
    subject_name: str | None = None
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    result_ref: str | None = None
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SubjectField(SQLModel, table=True):
    __tablename__ = "subject_fields"  # type: ignore[bad-override]

    subject_ref: str = Field(primary_key=True)
    field_name: str = Field(primary_key=True)
    value: str | None = Field(default=None, sa_column=Column(Text))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
