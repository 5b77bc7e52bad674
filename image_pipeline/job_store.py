"""Typed operations over the image_processing_jobs table.

Every state change is one conditional ``UPDATE ... WHERE status = <expected>``
so concurrent pollers coordinate through the table alone. A write that
matches no row means the job is no longer available to this caller; it is
reported as ``False``/skipped, never raised.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from image_pipeline.errors import ErrorCategory, ErrorCode, ErrorSource
from image_pipeline.models import ImageProcessingJob, JobStatus, JOB_TRANSITIONS, utcnow

logger = structlog.get_logger()

_MAX_ERROR_LENGTH = 1000


class InvalidTransition(Exception):
    """Raised when code asks for a job transition the state machine forbids."""


def _check_transition(from_statuses: Iterable[JobStatus], to_status: JobStatus) -> List[str]:
    sources = list(from_statuses)
    for source in sources:
        if to_status not in JOB_TRANSITIONS[source]:
            raise InvalidTransition(f"{source.value} -> {to_status.value}")
    return [source.value for source in sources]


class JobStore:
    """Job table adapter; each public method is a single atomic write or read."""

    def __init__(self, session_factory: sessionmaker, default_max_attempts: int = 3):
        self.session_factory = session_factory
        self.default_max_attempts = default_max_attempts

    def _transition(
        self,
        job_id: int,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        *conditions,
        **values,
    ) -> bool:
        expected = _check_transition(from_statuses, to_status)
        values.setdefault("updated_at", utcnow())
        with self.session_factory() as db:
            result = db.execute(
                update(ImageProcessingJob)
                .where(ImageProcessingJob.id == job_id, ImageProcessingJob.status.in_(expected), *conditions)
                .values(status=to_status.value, **values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount != 1:
            logger.warning("job_no_longer_available", job_id=job_id, to_status=to_status.value)
            return False
        return True

    def enqueue(self, item_id: str, original_key: str, max_attempts: Optional[int] = None) -> bool:
        """Insert a pending job; an existing (item_id, original_key) row makes this a no-op.

        Returns True when a new row was created.
        """
        values = {
            "item_id": item_id,
            "original_key": original_key,
            "status": JobStatus.PENDING.value,
            "attempt_count": 0,
            "max_attempts": max_attempts or self.default_max_attempts,
            "created_at": utcnow(),
            "updated_at": utcnow(),
        }
        with self.session_factory() as db:
            dialect = db.get_bind().dialect.name
            if dialect in ("postgresql", "sqlite"):
                insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
                stmt = insert(ImageProcessingJob).values(**values).on_conflict_do_nothing(
                    index_elements=["item_id", "original_key"]
                )
                created = db.execute(stmt).rowcount == 1
                db.commit()
            else:
                db.add(ImageProcessingJob(**values))
                try:
                    db.commit()
                    created = True
                except IntegrityError:
                    db.rollback()
                    created = False

        logger.info("job_enqueued", item_id=item_id, created=created)
        return created

    def get(self, job_id: int) -> Optional[ImageProcessingJob]:
        with self.session_factory() as db:
            return db.get(ImageProcessingJob, job_id)

    def claim_batch(self, limit: int) -> List[ImageProcessingJob]:
        """Claim up to ``limit`` eligible jobs, oldest first, marking them processing."""
        if limit <= 0:
            return []
        now = utcnow()
        claimed_ids = []
        with self.session_factory() as db:
            candidate_ids = db.execute(
                select(ImageProcessingJob.id)
                .where(
                    ImageProcessingJob.status == JobStatus.PENDING.value,
                    or_(ImageProcessingJob.next_retry_at.is_(None), ImageProcessingJob.next_retry_at <= now),
                )
                .order_by(ImageProcessingJob.created_at.asc(), ImageProcessingJob.id.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).scalars().all()

            for job_id in candidate_ids:
                result = db.execute(
                    update(ImageProcessingJob)
                    .where(
                        ImageProcessingJob.id == job_id,
                        ImageProcessingJob.status == JobStatus.PENDING.value,
                    )
                    .values(status=JobStatus.PROCESSING.value, started_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed_ids.append(job_id)
            db.commit()

            if not claimed_ids:
                return []
            return list(
                db.execute(
                    select(ImageProcessingJob)
                    .where(ImageProcessingJob.id.in_(claimed_ids))
                    .order_by(ImageProcessingJob.created_at.asc(), ImageProcessingJob.id.asc())
                ).scalars().all()
            )

    def mark_complete(self, job_id: int, duration_ms: Optional[int] = None) -> bool:
        now = utcnow()
        return self._transition(
            job_id,
            [JobStatus.PROCESSING],
            JobStatus.COMPLETE,
            completed_at=now,
            next_retry_at=None,
            processing_duration_ms=duration_ms,
            last_error_code=None,
            last_error_category=None,
            last_error_source=None,
            last_error=None,
        )

    def schedule_retry(
        self,
        job_id: int,
        attempt_count: int,
        next_retry_at: datetime,
        error_code: Optional[ErrorCode] = None,
        error_source: Optional[ErrorSource] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> bool:
        """Return a processing job to pending with ``attempt_count + 1``.

        The write only applies while the stored count still equals
        ``attempt_count`` and stays below ``max_attempts``.
        """
        return self._transition(
            job_id,
            [JobStatus.PROCESSING],
            JobStatus.PENDING,
            ImageProcessingJob.attempt_count == attempt_count,
            ImageProcessingJob.attempt_count < ImageProcessingJob.max_attempts,
            attempt_count=ImageProcessingJob.attempt_count + 1,
            next_retry_at=next_retry_at,
            started_at=None,
            last_error_code=error_code.value if error_code else None,
            last_error_category=ErrorCategory.TRANSIENT.value,
            last_error_source=error_source.value if error_source else None,
            last_error=(error_message or "")[:_MAX_ERROR_LENGTH] or None,
            processing_duration_ms=duration_ms,
        )

    def mark_failed(
        self,
        job_id: int,
        error_code: ErrorCode,
        error_category: ErrorCategory,
        error_source: Optional[ErrorSource] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> bool:
        return self._transition(
            job_id,
            [JobStatus.PROCESSING],
            JobStatus.FAILED,
            completed_at=utcnow(),
            next_retry_at=None,
            last_error_code=error_code.value,
            last_error_category=error_category.value,
            last_error_source=error_source.value if error_source else None,
            last_error=(error_message or "")[:_MAX_ERROR_LENGTH] or None,
            processing_duration_ms=duration_ms,
        )

    def requeue(self, job_id: int, attempt_count: int) -> bool:
        """Return an abandoned processing job to pending, immediately eligible.

        The lost attempt counts against the retry budget.
        """
        return self._transition(
            job_id,
            [JobStatus.PROCESSING],
            JobStatus.PENDING,
            ImageProcessingJob.attempt_count == attempt_count,
            ImageProcessingJob.attempt_count < ImageProcessingJob.max_attempts,
            attempt_count=ImageProcessingJob.attempt_count + 1,
            next_retry_at=utcnow(),
            started_at=None,
            last_error_code=ErrorCode.TIMEOUT.value,
            last_error_category=ErrorCategory.TRANSIENT.value,
            last_error_source=ErrorSource.INTERNAL.value,
            last_error="Job timed out (stale processing)",
        )

    def find_stale(self, threshold_ms: int) -> List[ImageProcessingJob]:
        cutoff = utcnow() - timedelta(milliseconds=threshold_ms)
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(ImageProcessingJob)
                    .where(
                        ImageProcessingJob.status == JobStatus.PROCESSING.value,
                        ImageProcessingJob.started_at < cutoff,
                    )
                    .order_by(ImageProcessingJob.started_at.asc())
                ).scalars().all()
            )
