"""Pipeline executor: runs one item through background removal and records the outcome."""

import asyncio
import time
from typing import Optional

import structlog

from image_pipeline.backoff import BackoffPolicy
from image_pipeline.config import Settings, settings
from image_pipeline.errors import ClassifiedError, ErrorKind, ErrorSource, PipelineError, classify
from image_pipeline.imaging import generate_thumbnail, resize_clean_image
from image_pipeline.item_store import ItemStore
from image_pipeline.job_store import JobStore
from image_pipeline.models import ELIGIBLE_ITEM_STATUSES, ImageProcessingJob, utcnow
from image_pipeline.monitoring.metrics import MetricsCollector, metrics
from image_pipeline.provider import BackgroundRemovalClient
from image_pipeline.schemas import JobResult
from image_pipeline.storage import BlobStore, output_keys

logger = structlog.get_logger()

_ELIGIBLE = {status.value for status in ELIGIBLE_ITEM_STATUSES}

JOB_NO_LONGER_AVAILABLE = "Job is no longer available"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class PipelineExecutor:
    """Job executor."""

    def __init__(
        self,
        job_store: JobStore,
        item_store: ItemStore,
        blob_store: BlobStore,
        provider: BackgroundRemovalClient,
        backoff: Optional[BackoffPolicy] = None,
        config: Settings = settings,
        metrics_collector: MetricsCollector = metrics,
    ):
        self.job_store = job_store
        self.item_store = item_store
        self.blob_store = blob_store
        self.provider = provider
        self.backoff = backoff or BackoffPolicy.from_settings(config)
        self.config = config
        self.metrics = metrics_collector

    async def process_item(self, item_id: str):
        """Run the item through download, background removal, transforms and upload.

        Raises on any failure. Failures before the item is claimed leave it
        untouched; failures after it leave the item ``failed`` with both keys
        cleared.
        """
        item = await asyncio.to_thread(self.item_store.get, item_id)
        if item is None:
            raise PipelineError(f"Item {item_id} not found", ErrorKind.NOT_FOUND)
        if not item.original_key:
            raise PipelineError(f"Item {item_id} has no original image", ErrorKind.VALIDATION)
        if item.image_processing_status not in _ELIGIBLE:
            raise PipelineError(
                f"Item status '{item.image_processing_status}' not eligible for processing",
                ErrorKind.VALIDATION,
            )
        if not await asyncio.to_thread(self.item_store.claim_for_processing, item_id, item.image_processing_status):
            raise PipelineError(f"Item {item_id} was claimed concurrently", ErrorKind.VALIDATION)

        try:
            original = await self.blob_store.download(item.original_key)

            provider_started = time.monotonic()
            try:
                cutout = await asyncio.wait_for(
                    self.provider.remove_background(original),
                    timeout=self.config.image_processing_timeout_ms / 1000,
                )
            except asyncio.TimeoutError as e:
                raise PipelineError(
                    f"Background removal exceeded {self.config.image_processing_timeout_ms}ms",
                    ErrorKind.TIMEOUT,
                    ErrorSource.PROVIDER,
                    cause=e,
                ) from e
            finally:
                self.metrics.record_provider_call(time.monotonic() - provider_started)

            clean_image = await asyncio.to_thread(
                resize_clean_image,
                cutout,
                self.config.clean_image_max_dimension,
                self.config.clean_image_jpeg_quality,
            )
            thumbnail = await asyncio.to_thread(
                generate_thumbnail,
                cutout,
                self.config.thumbnail_size,
                self.config.thumbnail_jpeg_quality,
            )

            clean_key, thumb_key = output_keys(item.user_id, item.id)
            await self.blob_store.upload(clean_key, clean_image)
            await self.blob_store.upload(thumb_key, thumbnail)

            if not await asyncio.to_thread(self.item_store.mark_complete, item_id, clean_key, thumb_key):
                raise PipelineError(f"Item {item_id} left processing before completion", ErrorKind.UNKNOWN)
        except Exception:
            await asyncio.to_thread(self.item_store.mark_failed, item_id)
            raise

    async def run(self, job: ImageProcessingJob) -> JobResult:
        """Process a claimed job and apply the retry/failure decision."""
        log = logger.bind(job_id=job.id, item_id=job.item_id, attempt_count=job.attempt_count)
        log.info("job_started", max_attempts=job.max_attempts)
        started = time.monotonic()

        try:
            await self.process_item(job.item_id)
        except Exception as e:
            duration_ms = _elapsed_ms(started)
            classified = classify(e)
            log.error(
                "job_failed",
                error=classified.message,
                error_code=classified.code.value,
                error_category=classified.category.value,
                error_source=classified.source.value,
                duration_ms=duration_ms,
            )
            self.metrics.record_job_completed("failed", duration_ms / 1000, classified.code.value)
            await self._decide(job, classified, duration_ms, log)
            return JobResult(
                item_id=job.item_id,
                job_id=job.id,
                success=False,
                error=classified.public_message,
                error_code=classified.code,
                error_category=classified.category,
                duration_ms=duration_ms,
            )

        duration_ms = _elapsed_ms(started)
        if not await asyncio.to_thread(self.job_store.mark_complete, job.id, duration_ms=duration_ms):
            # the row was recovered or finished by another invocation; it owns the outcome now
            log.warning("job_no_longer_available", duration_ms=duration_ms)
            self.metrics.record_job_completed("no_longer_available", duration_ms / 1000)
            return JobResult(
                item_id=job.item_id,
                job_id=job.id,
                success=False,
                error=JOB_NO_LONGER_AVAILABLE,
                duration_ms=duration_ms,
            )
        self.metrics.record_job_completed("complete", duration_ms / 1000)
        log.info("job_completed", duration_ms=duration_ms)
        return JobResult(item_id=job.item_id, job_id=job.id, success=True, duration_ms=duration_ms)

    async def _decide(self, job: ImageProcessingJob, classified: ClassifiedError, duration_ms: int, log):
        """Retry transient failures with budget left; fail everything else."""
        if classified.is_transient and job.attempt_count + 1 < job.max_attempts:
            delay = self.backoff.next_delay(job.attempt_count)
            next_retry_at = utcnow() + delay
            scheduled = await asyncio.to_thread(
                self.job_store.schedule_retry,
                job.id,
                job.attempt_count,
                next_retry_at,
                error_code=classified.code,
                error_source=classified.source,
                error_message=classified.message,
                duration_ms=duration_ms,
            )
            if scheduled:
                self.metrics.record_job_retry(classified.code.value)
                log.info(
                    "job_retry_scheduled",
                    next_attempt=job.attempt_count + 1,
                    delay_ms=int(delay.total_seconds() * 1000),
                    next_retry_at=next_retry_at.isoformat(),
                    error_code=classified.code.value,
                )
            return

        reason = "retries_exhausted" if classified.is_transient else "permanent_error"
        failed = await asyncio.to_thread(
            self.job_store.mark_failed,
            job.id,
            classified.code,
            classified.category,
            error_source=classified.source,
            error_message=classified.message,
            duration_ms=duration_ms,
        )
        if failed:
            log.warning(
                "job_permanently_failed",
                reason=reason,
                error_code=classified.code.value,
                error_category=classified.category.value,
            )

    async def run_direct(self, item_id: str) -> JobResult:
        """Process one item immediately, outside the job queue; no retries."""
        log = logger.bind(item_id=item_id, mode="direct")
        log.info("job_started")
        started = time.monotonic()
        try:
            await self.process_item(item_id)
        except Exception as e:
            duration_ms = _elapsed_ms(started)
            classified = classify(e)
            log.error(
                "job_failed",
                error=classified.message,
                error_code=classified.code.value,
                error_category=classified.category.value,
                error_source=classified.source.value,
                duration_ms=duration_ms,
            )
            self.metrics.record_job_completed("failed", duration_ms / 1000, classified.code.value)
            return JobResult(
                item_id=item_id,
                success=False,
                error=classified.public_message,
                error_code=classified.code,
                error_category=classified.category,
                duration_ms=duration_ms,
            )

        duration_ms = _elapsed_ms(started)
        self.metrics.record_job_completed("complete", duration_ms / 1000)
        log.info("job_completed", duration_ms=duration_ms)
        return JobResult(item_id=item_id, success=True, duration_ms=duration_ms)

    async def skip_item(self, item_id: str) -> JobResult:
        """Record that cleanup is disabled: a pending item becomes ``skipped``."""
        skipped = await asyncio.to_thread(self.item_store.mark_skipped, item_id)
        logger.info("item_processing_skipped", item_id=item_id, reason="feature_disabled", updated=skipped)
        return JobResult(item_id=item_id, success=True, skipped=True)
