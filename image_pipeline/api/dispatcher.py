"""Request dispatcher for the process-item-image endpoint.

Maps a raw request (method, body bytes, correlation id) to a status code and
a JSON body. Pipeline failures never escape as HTTP errors: they become job
transitions and per-item results inside a 200 response.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from pydantic import ValidationError

from image_pipeline.backoff import BackoffPolicy
from image_pipeline.config import ConfigurationError, Settings, require_service_config, settings
from image_pipeline.database import create_tables, get_engine, get_session_factory
from image_pipeline.item_store import ItemStore
from image_pipeline.job_store import JobStore
from image_pipeline.provider import BackgroundRemovalClient
from image_pipeline.schemas import ProcessItemImageRequest, ProcessItemImageResponse
from image_pipeline.storage import BlobStore
from image_pipeline.workers.batch_runner import BatchRunner
from image_pipeline.workers.job_executor import PipelineExecutor
from image_pipeline.workers.stale_recovery import StaleJobRecovery

logger = structlog.get_logger()

CONFIGURATION_ERROR = "Service configuration error"
DIRECT_MODE_ERROR = "Image processing failed"

_FIELD_ERRORS = {
    "itemId": "Invalid itemId format",
    "item_id": "Invalid itemId format",
    "batchSize": "Invalid batchSize",
    "batch_size": "Invalid batchSize",
    "recoverStale": "Invalid recoverStale",
    "recover_stale": "Invalid recoverStale",
}


@dataclass
class PipelineComponents:
    job_store: JobStore
    item_store: ItemStore
    executor: PipelineExecutor
    recovery: StaleJobRecovery
    runner: BatchRunner


def build_components(config: Settings) -> PipelineComponents:
    """Wire stores, adapters and workers from settings."""
    engine = get_engine(config.database_url)
    if config.auto_create_schema:
        create_tables(engine)
    session_factory = get_session_factory(engine)

    job_store = JobStore(session_factory, default_max_attempts=config.default_max_attempts)
    item_store = ItemStore(session_factory)
    executor = PipelineExecutor(
        job_store,
        item_store,
        BlobStore.from_settings(config),
        BackgroundRemovalClient.from_settings(config),
        backoff=BackoffPolicy.from_settings(config),
        config=config,
    )
    return PipelineComponents(
        job_store=job_store,
        item_store=item_store,
        executor=executor,
        recovery=StaleJobRecovery(job_store, item_store),
        runner=BatchRunner(job_store, executor, max_concurrent_jobs=config.max_concurrent_jobs),
    )


def _validation_message(error: ValidationError) -> str:
    for detail in error.errors():
        loc = detail.get("loc") or ()
        if loc and loc[0] in _FIELD_ERRORS:
            return _FIELD_ERRORS[loc[0]]
    return "Invalid request body"


class RequestDispatcher:
    """Routes a request to direct mode, queue mode or stale recovery."""

    def __init__(
        self,
        config: Settings = settings,
        components_factory: Callable[[Settings], PipelineComponents] = build_components,
    ):
        self.config = config
        self.components_factory = components_factory
        self._components: Optional[PipelineComponents] = None

    @property
    def components(self) -> PipelineComponents:
        if self._components is None:
            self._components = self.components_factory(require_service_config(self.config))
        return self._components

    def _response(self, status: int, correlation_id: str, **fields) -> Tuple[int, Dict[str, Any]]:
        body = ProcessItemImageResponse(correlation_id=correlation_id, **fields)
        return status, body.to_body()

    def _parse(self, raw_body: bytes) -> ProcessItemImageRequest:
        # an empty body means queue mode with defaults
        data = json.loads(raw_body) if raw_body and raw_body.strip() else {}
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return ProcessItemImageRequest.model_validate(data)

    async def dispatch(self, method: str, raw_body: bytes, correlation_id: str) -> Tuple[int, Dict[str, Any]]:
        """Handle one request and return ``(status_code, body)``."""
        if method.upper() != "POST":
            return self._response(405, correlation_id, success=False, error="Method not allowed", code="validation")

        logger.info("request_received")

        try:
            request = self._parse(raw_body)
        except ValidationError as e:
            message = _validation_message(e)
            logger.warning("request_invalid", error=message)
            return self._response(400, correlation_id, success=False, error=message, code="validation")
        except ValueError:
            # json.JSONDecodeError and UnicodeDecodeError are both ValueErrors
            logger.warning("request_invalid", error="Invalid request body")
            return self._response(400, correlation_id, success=False, error="Invalid request body", code="validation")

        try:
            components = self.components
            if request.item_id:
                return await self._direct(components, request, correlation_id)
            return await self._queue(components, request, correlation_id)
        except ConfigurationError as e:
            logger.error("config_missing", missing=e.missing)
            return self._response(500, correlation_id, success=False, error=CONFIGURATION_ERROR, code="server")
        except Exception as e:
            logger.error("unexpected_error", error=str(e), error_type=type(e).__name__, exc_info=True)
            return self._response(500, correlation_id, success=False, error=CONFIGURATION_ERROR, code="server")

    async def _direct(self, components: PipelineComponents, request: ProcessItemImageRequest, correlation_id: str):
        if not self.config.image_cleanup_enabled:
            logger.info("feature_disabled", feature="image_cleanup")
            result = await components.executor.skip_item(request.item_id)
            return self._response(
                200, correlation_id, success=True, processed=0, failed=0, skipped=1, results=[result]
            )

        result = await components.executor.run_direct(request.item_id)
        if result.success:
            return self._response(200, correlation_id, success=True, processed=1, failed=0, results=[result])
        return self._response(
            200,
            correlation_id,
            success=False,
            processed=0,
            failed=1,
            results=[result],
            error=DIRECT_MODE_ERROR,
            code="processing",
        )

    async def _queue(self, components: PipelineComponents, request: ProcessItemImageRequest, correlation_id: str):
        if not self.config.image_cleanup_enabled:
            logger.info("feature_disabled", feature="image_cleanup")
            return self._response(200, correlation_id, success=True, processed=0, failed=0, results=[])

        results = []
        recovered = None
        if request.recover_stale:
            recovery = await asyncio.to_thread(components.recovery.recover_stale, self.config.stale_job_threshold_ms)
            recovered = recovery.recovered
            results.extend(recovery.results)

        batch_size = min(request.batch_size or self.config.default_batch_size, self.config.max_batch_size)
        batch = await components.runner.run_batch(batch_size)
        results.extend(batch.results)

        return self._response(
            200,
            correlation_id,
            success=True,
            processed=batch.processed,
            failed=batch.failed,
            recovered=recovered,
            results=results,
        )
