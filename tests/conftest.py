"""Shared fixtures: in-memory database, stores, and fake storage/provider adapters."""

import asyncio
import io
import uuid
from datetime import timedelta

import pytest
from PIL import Image
from sqlalchemy import create_engine, update

from image_pipeline.backoff import BackoffPolicy
from image_pipeline.config import Settings
from image_pipeline.database import get_session_factory
from image_pipeline.errors import ErrorKind, ErrorSource, PipelineError
from image_pipeline.item_store import ItemStore
from image_pipeline.job_store import JobStore
from image_pipeline.models import Base, ImageProcessingJob, Item, utcnow
from image_pipeline.monitoring.metrics import MetricsCollector
from image_pipeline.workers.job_executor import PipelineExecutor


def make_image(size=(400, 300), color=(200, 30, 30, 255), mode="RGBA", fmt="PNG") -> bytes:
    image = Image.new(mode, size, color if mode == "RGBA" else color[:3])
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class FakeBlobStore:
    """In-memory stand-in for BlobStore."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.uploads = []
        self.download_errors = []
        self.upload_errors = {}

    async def download(self, key):
        if self.download_errors:
            raise self.download_errors.pop(0)
        if key not in self.objects:
            raise PipelineError(f"Image not found: {key}", ErrorKind.NOT_FOUND, ErrorSource.STORAGE, 404)
        return self.objects[key]

    async def upload(self, key, data, content_type="image/jpeg"):
        if key in self.upload_errors:
            raise self.upload_errors[key]
        self.objects[key] = data
        self.uploads.append(key)


class FakeProvider:
    """Returns a fixed cutout, or raises queued errors first."""

    def __init__(self, result=None, errors=None, delay=0.0):
        self.result = result or make_image(color=(10, 120, 10, 128))
        self.errors = list(errors or [])
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def remove_background(self, image):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.errors:
                raise self.errors.pop(0)
            return self.result
        finally:
            self.in_flight -= 1


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        s3_access_key="test-access",
        s3_secret_key="test-secret",
        replicate_api_key="test-token",
        image_processing_timeout_ms=2000,
        max_concurrent_jobs=2,
    )


@pytest.fixture
def engine(tmp_path):
    # a file database, since the stores run on worker threads
    engine = create_engine(f"sqlite:///{tmp_path / 'pipeline.db'}", connect_args={"check_same_thread": False, "timeout": 5})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def item_store(session_factory):
    return ItemStore(session_factory)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def collector():
    return MetricsCollector()


@pytest.fixture
def executor(job_store, item_store, blob_store, provider, test_settings, collector):
    return PipelineExecutor(
        job_store,
        item_store,
        blob_store,
        provider,
        backoff=BackoffPolicy(base_delay_ms=1000, max_delay_ms=60000, rng=lambda: 0.5),
        config=test_settings,
        metrics_collector=collector,
    )


@pytest.fixture
def add_item(session_factory, blob_store):
    """Insert an item whose original image exists in the fake blob store."""

    def _add(status="pending", user_id="user-1", with_original=True, original_key=None):
        item_id = str(uuid.uuid4())
        key = original_key or f"user/{user_id}/items/{item_id}/original.jpg"
        if with_original:
            blob_store.objects[key] = make_image(fmt="JPEG", mode="RGB")
        with session_factory() as db:
            db.add(Item(id=item_id, user_id=user_id, original_key=key, image_processing_status=status))
            db.commit()
        return item_id, key

    return _add


@pytest.fixture
def make_ready(session_factory):
    """Make a pending job immediately eligible, regardless of its backoff."""

    def _ready(job_id):
        with session_factory() as db:
            db.execute(
                update(ImageProcessingJob)
                .where(ImageProcessingJob.id == job_id)
                .values(next_retry_at=utcnow() - timedelta(seconds=1))
            )
            db.commit()

    return _ready


@pytest.fixture
def age_job(session_factory):
    """Push a job's started_at into the past."""

    def _age(job_id, ms):
        with session_factory() as db:
            db.execute(
                update(ImageProcessingJob)
                .where(ImageProcessingJob.id == job_id)
                .values(started_at=utcnow() - timedelta(milliseconds=ms))
            )
            db.commit()

    return _age
