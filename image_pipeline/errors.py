"""Error taxonomy and classification for pipeline failures.

Lower layers (blob storage, provider client, image transforms) raise
``PipelineError`` tagged with a ``kind`` and, for HTTP failures, the status
code. ``classify`` maps those tags, plus a handful of well-known exception
types, to a normalized ``ErrorCode`` and its transient/permanent category.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests
from sqlalchemy.exc import SQLAlchemyError


class ErrorCategory(str, Enum):
    """Whether retrying can fix the failure."""
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ErrorCode(str, Enum):
    """Normalized error codes."""
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    VALIDATION = "validation"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PROVIDER_FAILED = "provider_failed"


ERROR_CATEGORIES = {
    ErrorCode.TIMEOUT: ErrorCategory.TRANSIENT,
    ErrorCode.RATE_LIMIT: ErrorCategory.TRANSIENT,
    ErrorCode.NETWORK: ErrorCategory.TRANSIENT,
    ErrorCode.SERVER_ERROR: ErrorCategory.TRANSIENT,
    ErrorCode.UNKNOWN: ErrorCategory.TRANSIENT,
    ErrorCode.NOT_FOUND: ErrorCategory.PERMANENT,
    ErrorCode.UNAUTHORIZED: ErrorCategory.PERMANENT,
    ErrorCode.FORBIDDEN: ErrorCategory.PERMANENT,
    ErrorCode.VALIDATION: ErrorCategory.PERMANENT,
    ErrorCode.UNSUPPORTED_FORMAT: ErrorCategory.PERMANENT,
    ErrorCode.PROVIDER_FAILED: ErrorCategory.PERMANENT,
}

# Caller-facing text per code; raw exception messages stay in logs and job rows.
PUBLIC_ERROR_MESSAGES = {
    ErrorCode.TIMEOUT: "Image processing timed out",
    ErrorCode.RATE_LIMIT: "Image processing provider is rate limited",
    ErrorCode.NETWORK: "Network error during image processing",
    ErrorCode.SERVER_ERROR: "Upstream service error during image processing",
    ErrorCode.UNKNOWN: "Image processing failed",
    ErrorCode.NOT_FOUND: "Item or image not found",
    ErrorCode.UNAUTHORIZED: "Image processing is not authorized",
    ErrorCode.FORBIDDEN: "Image processing is forbidden",
    ErrorCode.VALIDATION: "Item is not eligible for image processing",
    ErrorCode.UNSUPPORTED_FORMAT: "Unsupported image format",
    ErrorCode.PROVIDER_FAILED: "Background removal failed",
}


class ErrorKind(str, Enum):
    """Tags set by the adapters that raise ``PipelineError``."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PROVIDER_REJECTED = "provider_rejected"
    UNKNOWN = "unknown"


class ErrorSource(str, Enum):
    """Component that produced the error."""
    STORAGE = "storage"
    PROVIDER = "provider"
    INTERNAL = "internal"


class PipelineError(Exception):
    """Tagged failure raised by the storage, provider and imaging layers."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        source: ErrorSource = ErrorSource.INTERNAL,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.source = source
        self.status = status
        self.cause = cause


@dataclass(frozen=True)
class ClassifiedError:
    """Outcome of ``classify``."""
    code: ErrorCode
    category: ErrorCategory
    source: ErrorSource
    message: str
    status: Optional[int] = None

    @property
    def is_transient(self) -> bool:
        return self.category is ErrorCategory.TRANSIENT

    @property
    def public_message(self) -> str:
        return PUBLIC_ERROR_MESSAGES[self.code]


_KIND_CODES = {
    ErrorKind.NETWORK: ErrorCode.NETWORK,
    ErrorKind.TIMEOUT: ErrorCode.TIMEOUT,
    ErrorKind.VALIDATION: ErrorCode.VALIDATION,
    ErrorKind.NOT_FOUND: ErrorCode.NOT_FOUND,
    ErrorKind.UNSUPPORTED_FORMAT: ErrorCode.UNSUPPORTED_FORMAT,
    ErrorKind.PROVIDER_REJECTED: ErrorCode.PROVIDER_FAILED,
    ErrorKind.UNKNOWN: ErrorCode.UNKNOWN,
}


def category_for(code: ErrorCode) -> ErrorCategory:
    return ERROR_CATEGORIES[code]


def classify_http_status(status: int) -> ErrorCode:
    """Map an HTTP status code to an error code."""
    if status == 429:
        return ErrorCode.RATE_LIMIT
    if status >= 500:
        return ErrorCode.SERVER_ERROR
    if status == 401:
        return ErrorCode.UNAUTHORIZED
    if status == 403:
        return ErrorCode.FORBIDDEN
    if status == 404:
        return ErrorCode.NOT_FOUND
    if status >= 400:
        return ErrorCode.VALIDATION
    return ErrorCode.UNKNOWN


def _code_for(error: BaseException) -> ErrorCode:
    if isinstance(error, PipelineError):
        if error.kind is ErrorKind.HTTP_STATUS:
            return classify_http_status(error.status) if error.status else ErrorCode.UNKNOWN
        return _KIND_CODES[error.kind]
    # requests.Timeout must be checked before ConnectionError (ConnectTimeout is both)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, requests.Timeout)):
        return ErrorCode.TIMEOUT
    if isinstance(error, (requests.ConnectionError, ConnectionError)):
        return ErrorCode.NETWORK
    if isinstance(error, SQLAlchemyError):
        return ErrorCode.SERVER_ERROR
    return ErrorCode.UNKNOWN


def classify(error: BaseException) -> ClassifiedError:
    """Classify any exception; unrecognized errors are transient ``unknown``."""
    code = _code_for(error)
    source = error.source if isinstance(error, PipelineError) else ErrorSource.INTERNAL
    status = error.status if isinstance(error, PipelineError) else None
    return ClassifiedError(
        code=code,
        category=ERROR_CATEGORIES[code],
        source=source,
        message=str(error) or type(error).__name__,
        status=status,
    )
