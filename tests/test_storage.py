"""Tests for the S3 blob store adapter."""

import io

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from image_pipeline.errors import ErrorCode, ErrorKind, ErrorSource, PipelineError, classify
from image_pipeline.storage import BlobStore, output_keys

BUCKET = "wardrobe-items"


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )


def test_output_keys_are_deterministic():
    assert output_keys("u1", "i1") == ("user/u1/items/i1/clean.jpg", "user/u1/items/i1/thumb.jpg")


@pytest.mark.asyncio
async def test_download(s3_client):
    store = BlobStore(s3_client, BUCKET)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "get_object",
            {"Body": io.BytesIO(b"jpeg-bytes")},
            {"Bucket": BUCKET, "Key": "user/u1/items/i1/original.jpg"},
        )
        assert await store.download("user/u1/items/i1/original.jpg") == b"jpeg-bytes"
        stubber.assert_no_pending_responses()


@pytest.mark.asyncio
async def test_upload_puts_object_with_content_type(monkeypatch, s3_client):
    calls = []
    monkeypatch.setattr(s3_client, "put_object", lambda **kwargs: calls.append(kwargs) or {})
    store = BlobStore(s3_client, BUCKET)

    await store.upload("user/u1/items/i1/clean.jpg", b"data")

    assert calls == [
        {"Bucket": BUCKET, "Key": "user/u1/items/i1/clean.jpg", "Body": b"data", "ContentType": "image/jpeg"}
    ]


@pytest.mark.asyncio
async def test_missing_object_is_not_found(s3_client):
    store = BlobStore(s3_client, BUCKET)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        with pytest.raises(PipelineError) as excinfo:
            await store.download("missing.jpg")

    assert excinfo.value.kind is ErrorKind.NOT_FOUND
    assert excinfo.value.source is ErrorSource.STORAGE
    assert classify(excinfo.value).code is ErrorCode.NOT_FOUND


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, code",
    [(503, ErrorCode.SERVER_ERROR), (403, ErrorCode.FORBIDDEN), (429, ErrorCode.RATE_LIMIT)],
)
async def test_http_errors_keep_status(s3_client, status, code):
    store = BlobStore(s3_client, BUCKET)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("put_object", service_error_code="SomeError", http_status_code=status)
        with pytest.raises(PipelineError) as excinfo:
            await store.upload("clean.jpg", b"data")

    assert excinfo.value.status == status
    assert classify(excinfo.value).code is code


@pytest.mark.asyncio
async def test_empty_download_is_not_found(s3_client):
    store = BlobStore(s3_client, BUCKET)
    with Stubber(s3_client) as stubber:
        stubber.add_response("get_object", {"Body": io.BytesIO(b"")}, {"Bucket": BUCKET, "Key": "empty.jpg"})
        with pytest.raises(PipelineError) as excinfo:
            await store.download("empty.jpg")

    assert excinfo.value.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_connection_failure_is_network(monkeypatch, s3_client):
    def refuse(**kwargs):
        raise EndpointConnectionError(endpoint_url="http://s3.invalid")

    monkeypatch.setattr(s3_client, "get_object", refuse)
    store = BlobStore(s3_client, BUCKET)

    with pytest.raises(PipelineError) as excinfo:
        await store.download("original.jpg")

    assert classify(excinfo.value).code is ErrorCode.NETWORK
