"""REST API endpoints for the item image pipeline."""

import uuid

from fastapi import Depends, FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from image_pipeline.api.dispatcher import RequestDispatcher
from image_pipeline.config import settings
from image_pipeline.database import check_connection, get_engine
from image_pipeline.main import configure_logging
from image_pipeline.monitoring.metrics import metrics
from image_pipeline.schemas import HealthResponse

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Correlation-ID"
PROCESS_ITEM_IMAGE_PATH = "/process-item-image"

app = FastAPI(
    title="Item Image Pipeline",
    description="Background removal and thumbnailing for wardrobe item photos",
    version="1.0.0"
)

dispatcher = RequestDispatcher(settings)


def get_dispatcher() -> RequestDispatcher:
    return dispatcher


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    configure_logging(settings.log_level)
    logger.info("REST API started", port=settings.api_port, environment=settings.environment)


@app.post(PROCESS_ITEM_IMAGE_PATH)
async def process_item_image(request: Request, dispatcher: RequestDispatcher = Depends(get_dispatcher)):
    """Process one item (``itemId``) or a batch of queued jobs."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    body = await request.body() if request.method == "POST" else b""

    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
        status_code, payload = await dispatcher.dispatch(request.method, body, correlation_id)

    return JSONResponse(payload, status_code=status_code, headers={CORRELATION_HEADER: correlation_id})


@app.exception_handler(StarletteHTTPException)
async def method_not_allowed_handler(request: Request, exc: StarletteHTTPException):
    """Any other method on the pipeline endpoint gets the pipeline's 405 body."""
    if exc.status_code == 405 and request.url.path == PROCESS_ITEM_IMAGE_PATH:
        resolve = app.dependency_overrides.get(get_dispatcher, get_dispatcher)
        return await process_item_image(request, resolve())
    return await http_exception_handler(request, exc)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    missing = settings.missing_service_config()
    database_connected = bool(settings.database_url) and check_connection(get_engine(settings.database_url))
    healthy = database_connected and not missing
    body = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        database_connected=database_connected,
        configuration_complete=not missing,
        missing_configuration=missing,
    )
    return JSONResponse(body.model_dump(), status_code=200 if healthy else 503)


@app.get("/metrics")
async def get_metrics():
    """Prometheus metrics endpoint."""
    return Response(metrics.get_metrics(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
