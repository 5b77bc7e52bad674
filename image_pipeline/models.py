"""Database models for items and image processing jobs."""

from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
from enum import Enum
import uuid

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage format for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStatus(str, Enum):
    """Job status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


# Allowed job transitions; complete and failed are absorbing.
JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.PENDING, JobStatus.COMPLETE, JobStatus.FAILED},
    JobStatus.COMPLETE: set(),
    JobStatus.FAILED: set(),
}


class ItemImageStatus(str, Enum):
    """Item image processing status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


ELIGIBLE_ITEM_STATUSES = (ItemImageStatus.PENDING, ItemImageStatus.FAILED)


class Item(Base):
    """Wardrobe item; only the image fields are read or written here."""

    __tablename__ = "items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    original_key = Column(String, nullable=True)
    clean_key = Column(String, nullable=True)
    thumb_key = Column(String, nullable=True)
    image_processing_status = Column(String, nullable=False, default=ItemImageStatus.PENDING.value)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ImageProcessingJob(Base):
    """Queue row for one (item, original image) processing request."""

    __tablename__ = "image_processing_jobs"
    __table_args__ = (
        UniqueConstraint("item_id", "original_key", name="uq_image_processing_jobs_item_original"),
        Index("ix_image_processing_jobs_status_created", "status", "created_at"),
        Index("ix_image_processing_jobs_status_started", "status", "started_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String, nullable=False, index=True)
    original_key = Column(String, nullable=False)
    status = Column(String, nullable=False, default=JobStatus.PENDING.value)
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Diagnostics
    last_error_code = Column(String, nullable=True)
    last_error_category = Column(String, nullable=True)
    last_error_source = Column(String, nullable=True)
    last_error = Column(Text, nullable=True)
    processing_duration_ms = Column(Integer, nullable=True)

    def to_dict(self):
        """Convert job to dictionary."""
        return {
            "id": self.id,
            "item_id": self.item_id,
            "original_key": self.original_key,
            "status": self.status,
            "attempt_count": self.attempt_count,
            "max_attempts": self.max_attempts,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "last_error_code": self.last_error_code,
            "last_error_category": self.last_error_category,
            "last_error_source": self.last_error_source,
            "processing_duration_ms": self.processing_duration_ms,
        }
