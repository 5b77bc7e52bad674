"""Tests for error classification."""

import asyncio

import pytest
import requests
from sqlalchemy.exc import OperationalError

from image_pipeline.errors import (
    ERROR_CATEGORIES,
    PUBLIC_ERROR_MESSAGES,
    ErrorCategory,
    ErrorCode,
    ErrorKind,
    ErrorSource,
    PipelineError,
    classify,
    classify_http_status,
)


def test_every_code_has_a_category_and_message():
    assert len(ErrorCode) == 11
    assert set(ERROR_CATEGORIES) == set(ErrorCode)
    assert set(PUBLIC_ERROR_MESSAGES) == set(ErrorCode)


@pytest.mark.parametrize(
    "status, code",
    [
        (429, ErrorCode.RATE_LIMIT),
        (500, ErrorCode.SERVER_ERROR),
        (503, ErrorCode.SERVER_ERROR),
        (401, ErrorCode.UNAUTHORIZED),
        (403, ErrorCode.FORBIDDEN),
        (404, ErrorCode.NOT_FOUND),
        (400, ErrorCode.VALIDATION),
        (422, ErrorCode.VALIDATION),
        (302, ErrorCode.UNKNOWN),
    ],
)
def test_classify_http_status(status, code):
    assert classify_http_status(status) is code


def test_http_status_error_keeps_source_and_status():
    error = PipelineError("Prediction create returned HTTP 429", ErrorKind.HTTP_STATUS, ErrorSource.PROVIDER, 429)
    classified = classify(error)
    assert classified.code is ErrorCode.RATE_LIMIT
    assert classified.category is ErrorCategory.TRANSIENT
    assert classified.source is ErrorSource.PROVIDER
    assert classified.status == 429
    assert classified.is_transient


@pytest.mark.parametrize(
    "kind, code, category",
    [
        (ErrorKind.NETWORK, ErrorCode.NETWORK, ErrorCategory.TRANSIENT),
        (ErrorKind.TIMEOUT, ErrorCode.TIMEOUT, ErrorCategory.TRANSIENT),
        (ErrorKind.UNKNOWN, ErrorCode.UNKNOWN, ErrorCategory.TRANSIENT),
        (ErrorKind.NOT_FOUND, ErrorCode.NOT_FOUND, ErrorCategory.PERMANENT),
        (ErrorKind.VALIDATION, ErrorCode.VALIDATION, ErrorCategory.PERMANENT),
        (ErrorKind.UNSUPPORTED_FORMAT, ErrorCode.UNSUPPORTED_FORMAT, ErrorCategory.PERMANENT),
        (ErrorKind.PROVIDER_REJECTED, ErrorCode.PROVIDER_FAILED, ErrorCategory.PERMANENT),
    ],
)
def test_classify_pipeline_error_kinds(kind, code, category):
    classified = classify(PipelineError("boom", kind))
    assert classified.code is code
    assert classified.category is category


@pytest.mark.parametrize(
    "error, code",
    [
        (asyncio.TimeoutError(), ErrorCode.TIMEOUT),
        (requests.ConnectTimeout(), ErrorCode.TIMEOUT),
        (requests.ConnectionError(), ErrorCode.NETWORK),
        (ConnectionResetError(), ErrorCode.NETWORK),
        (OperationalError("SELECT 1", {}, Exception("db down")), ErrorCode.SERVER_ERROR),
    ],
)
def test_classify_exception_types(error, code):
    classified = classify(error)
    assert classified.code is code
    assert classified.source is ErrorSource.INTERNAL
    assert classified.is_transient


def test_unrecognized_errors_are_transient_unknown():
    classified = classify(RuntimeError("something odd"))
    assert classified.code is ErrorCode.UNKNOWN
    assert classified.category is ErrorCategory.TRANSIENT
    assert classified.message == "something odd"


def test_messages_are_not_inspected():
    classified = classify(PipelineError("404 not found, rate limit, timeout", ErrorKind.UNKNOWN))
    assert classified.code is ErrorCode.UNKNOWN


def test_public_message_hides_internal_text():
    classified = classify(PipelineError("bucket secret-bucket missing key x", ErrorKind.NOT_FOUND))
    assert classified.public_message == PUBLIC_ERROR_MESSAGES[ErrorCode.NOT_FOUND]
    assert "secret-bucket" not in classified.public_message
