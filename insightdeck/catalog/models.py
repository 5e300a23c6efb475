"""
Database models for the dataset catalog.

A ``Dataset`` is the record of one uploaded file: where its bytes live, its
processing status and, once ingested, its inferred columns and row count.
``DatasetEvent`` keeps the audit trail of every ingestion stage.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (  # type: ignore
    BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer,
    JSON, String, Text, Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship  # type: ignore


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class Dataset(Base):
    """
    Uploaded tabular file and its inferred schema.

    ``columns`` holds a list of ``{"name", "type", "nullable"}`` objects and
    is only meaningful while ``processing_status`` is ``completed``.
    """
    __tablename__ = "dataset"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Stored file
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    uri: Mapped[str] = mapped_column(Text, nullable=False)

    # Inferred schema
    columns: Mapped[Optional[List[dict]]] = mapped_column(JSON, nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Processing status
    processing_status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Set on every claim; terminal writes must present the same value
    attempt_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    upload_date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
    last_modified: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    events: Mapped[List["DatasetEvent"]] = relationship(
        "DatasetEvent", back_populates="dataset",
        cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name="check_dataset_processing_status"),
        CheckConstraint(
            "file_type IN ('csv', 'json', 'excel')", name="check_dataset_file_type"),
        CheckConstraint("row_count >= 0", name="check_dataset_row_count"),
        CheckConstraint("file_size >= 0", name="check_dataset_file_size"),
        Index("idx_dataset_owner_created_at", "owner", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Dataset(id={self.id}, name={self.name}, status={self.processing_status})>"


class DatasetEvent(Base):
    """
    Audit trail for dataset ingestion.

    One row per stage (upload, processing_started, processing_completed,
    processing_failed, reprocess_requested, timed_out).
    """
    __tablename__ = "dataset_event"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    dataset_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("dataset.id", ondelete="CASCADE"), nullable=False, index=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    stage: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    detail: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)

    dataset: Mapped["Dataset"] = relationship("Dataset", back_populates="events")

    __table_args__ = (
        Index("idx_dataset_event_created_at", "created_at"),
    )
