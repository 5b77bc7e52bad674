"""Recovery of jobs abandoned in ``processing`` by a crashed or timed-out invocation."""

from typing import List

import structlog
from pydantic import BaseModel

from image_pipeline.errors import ErrorCategory, ErrorCode, ErrorSource
from image_pipeline.item_store import ItemStore
from image_pipeline.job_store import JobStore
from image_pipeline.models import ItemImageStatus
from image_pipeline.monitoring.metrics import MetricsCollector, metrics
from image_pipeline.schemas import JobResult

logger = structlog.get_logger()


class RecoveryResult(BaseModel):
    recovered: int = 0
    results: List[JobResult] = []


class StaleJobRecovery:
    """Requeues stale jobs with retry budget left and fails the rest."""

    def __init__(self, job_store: JobStore, item_store: ItemStore, metrics_collector: MetricsCollector = metrics):
        self.job_store = job_store
        self.item_store = item_store
        self.metrics = metrics_collector

    def recover_stale(self, threshold_ms: int) -> RecoveryResult:
        """Recover every job whose ``started_at`` is older than ``threshold_ms``.

        Only jobs whose conditional write lands are counted; a job finished or
        recovered by someone else in the meantime is left alone.
        """
        stale_jobs = self.job_store.find_stale(threshold_ms)
        logger.info("stale_recovery_start", threshold_ms=threshold_ms, stale_jobs=len(stale_jobs))

        result = RecoveryResult()
        for job in stale_jobs:
            item = self.item_store.get(job.item_id)

            if item is not None and item.image_processing_status == ItemImageStatus.COMPLETE.value:
                # the work finished but the job row never caught up
                if self.job_store.mark_complete(job.id):
                    action = "marked_complete"
                    job_result = JobResult(item_id=job.item_id, job_id=job.id, success=True)
                else:
                    continue
            elif job.attempt_count < job.max_attempts:
                if not self.job_store.requeue(job.id, job.attempt_count):
                    continue
                self.item_store.resync_status(job.item_id, ItemImageStatus.PENDING)
                action = "reset_to_pending"
                job_result = JobResult(
                    item_id=job.item_id,
                    job_id=job.id,
                    success=True,
                    error_code=ErrorCode.TIMEOUT,
                    error_category=ErrorCategory.TRANSIENT,
                )
            else:
                if not self.job_store.mark_failed(
                    job.id,
                    ErrorCode.TIMEOUT,
                    ErrorCategory.PERMANENT,
                    error_source=ErrorSource.INTERNAL,
                    error_message="Job exceeded max attempts after stale recovery",
                ):
                    continue
                self.item_store.resync_status(job.item_id, ItemImageStatus.FAILED)
                action = "mark_as_failed"
                job_result = JobResult(
                    item_id=job.item_id,
                    job_id=job.id,
                    success=False,
                    error="Exceeded max attempts",
                    error_code=ErrorCode.TIMEOUT,
                    error_category=ErrorCategory.PERMANENT,
                )

            logger.warning(
                "stale_job_recovered",
                job_id=job.id,
                item_id=job.item_id,
                attempt_count=job.attempt_count,
                max_attempts=job.max_attempts,
                started_at=job.started_at.isoformat() if job.started_at else None,
                action=action,
            )
            self.metrics.record_stale_recovery(action)
            result.recovered += 1
            result.results.append(job_result)

        logger.info("stale_recovery_complete", recovered=result.recovered)
        return result
