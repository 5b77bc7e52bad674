"""Queue poller: claims a batch of jobs and runs them with bounded concurrency."""

import asyncio
import time
from typing import List

import structlog

from image_pipeline.errors import classify
from image_pipeline.job_store import JobStore
from image_pipeline.models import ImageProcessingJob
from image_pipeline.monitoring.metrics import MetricsCollector, metrics
from image_pipeline.schemas import BatchResult, JobResult
from .job_executor import PipelineExecutor

logger = structlog.get_logger()


class BatchRunner:
    """Pool of concurrent job executions over one claimed batch."""

    def __init__(
        self,
        job_store: JobStore,
        executor: PipelineExecutor,
        max_concurrent_jobs: int = 5,
        metrics_collector: MetricsCollector = metrics,
    ):
        self.job_store = job_store
        self.executor = executor
        self.max_concurrent_jobs = max(1, max_concurrent_jobs)
        self.metrics = metrics_collector

    async def _run_one(self, semaphore: asyncio.Semaphore, job: ImageProcessingJob) -> JobResult:
        async with semaphore:
            try:
                return await self.executor.run(job)
            except Exception as e:
                # the executor could not even record the outcome; the job stays
                # processing until stale recovery picks it up
                classified = classify(e)
                logger.error(
                    "job_execution_error",
                    job_id=job.id,
                    item_id=job.item_id,
                    error=classified.message,
                    error_code=classified.code.value,
                    exc_info=True,
                )
                return JobResult(
                    item_id=job.item_id,
                    job_id=job.id,
                    success=False,
                    error=classified.public_message,
                    error_code=classified.code,
                    error_category=classified.category,
                )

    async def run_batch(self, batch_size: int) -> BatchResult:
        """Claim up to ``batch_size`` jobs and process each independently."""
        logger.info("queue_poll_start", batch_size=batch_size, max_concurrency=self.max_concurrent_jobs)
        started = time.monotonic()

        jobs = await asyncio.to_thread(self.job_store.claim_batch, batch_size)
        self.metrics.update_batch_size(len(jobs))
        logger.info("queue_poll_complete", jobs_found=len(jobs))
        if not jobs:
            return BatchResult()

        semaphore = asyncio.Semaphore(self.max_concurrent_jobs)
        results: List[JobResult] = await asyncio.gather(*(self._run_one(semaphore, job) for job in jobs))

        processed = sum(1 for result in results if result.success)
        failed = len(results) - processed
        logger.info(
            "queue_batch_complete",
            processed=processed,
            failed=failed,
            total=len(jobs),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return BatchResult(processed=processed, failed=failed, results=list(results))


async def main():
    """Run one stale-recovery pass followed by one batch, then exit."""
    from image_pipeline.api.dispatcher import build_components
    from image_pipeline.config import require_service_config, settings
    from image_pipeline.main import configure_logging

    configure_logging(settings.log_level)
    components = build_components(require_service_config(settings))

    recovery = await asyncio.to_thread(components.recovery.recover_stale, settings.stale_job_threshold_ms)
    batch = await components.runner.run_batch(settings.default_batch_size)
    logger.info(
        "batch_run_finished",
        recovered=recovery.recovered,
        processed=batch.processed,
        failed=batch.failed,
    )


if __name__ == "__main__":
    asyncio.run(main())
