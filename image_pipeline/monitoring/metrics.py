"""Prometheus metrics collection for the image pipeline."""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger()


class MetricsCollector:
    """Collects and exposes Prometheus metrics for image processing jobs."""

    def __init__(self):
        """Initialize metrics collector."""
        self.registry = CollectorRegistry()

        # Job metrics
        self.jobs_processed = Counter(
            'image_jobs_processed_total',
            'Total number of image jobs processed',
            ['status', 'error_code'],
            registry=self.registry
        )

        self.job_execution_time = Histogram(
            'image_job_execution_seconds',
            'Image job execution time in seconds',
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float('inf')],
            registry=self.registry
        )

        self.job_retries = Counter(
            'image_job_retries_total',
            'Total number of image job retries scheduled',
            ['error_code'],
            registry=self.registry
        )

        self.stale_jobs_recovered = Counter(
            'image_stale_jobs_recovered_total',
            'Total number of stale jobs recovered',
            ['outcome'],
            registry=self.registry
        )

        # Provider metrics
        self.provider_call_time = Histogram(
            'image_provider_call_seconds',
            'Background removal provider call time in seconds',
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, float('inf')],
            registry=self.registry
        )

        # Queue metrics
        self.last_batch_size = Gauge(
            'image_last_batch_size',
            'Number of jobs claimed by the most recent batch',
            registry=self.registry
        )

        self.system_info = Info(
            'system_info',
            'System information',
            registry=self.registry
        )
        self.system_info.info({
            'version': '1.0.0',
            'component': 'item_image_pipeline'
        })

    def record_job_completed(self, status: str, execution_time: float, error_code: str = ""):
        """Record a finished job attempt."""
        self.jobs_processed.labels(status=status, error_code=error_code).inc()
        self.job_execution_time.observe(execution_time)
        logger.debug("Job completion recorded", status=status, error_code=error_code, execution_time=execution_time)

    def record_job_retry(self, error_code: str):
        self.job_retries.labels(error_code=error_code).inc()

    def record_stale_recovery(self, outcome: str):
        self.stale_jobs_recovered.labels(outcome=outcome).inc()

    def record_provider_call(self, duration: float):
        self.provider_call_time.observe(duration)

    def update_batch_size(self, size: int):
        self.last_batch_size.set(size)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus format."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
metrics = MetricsCollector()
