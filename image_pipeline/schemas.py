"""Pydantic schemas for the process-item-image request/response bodies."""

import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from image_pipeline.errors import ErrorCategory, ErrorCode

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


class CamelModel(BaseModel):
    """Fields are snake_case in Python and camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_body(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProcessItemImageRequest(CamelModel):
    """Request schema; ``item_id`` selects direct mode."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, strict=True, extra="ignore")

    item_id: Optional[str] = None
    batch_size: Optional[int] = Field(default=None, gt=0)
    recover_stale: Optional[bool] = None

    @field_validator("item_id")
    @classmethod
    def validate_item_id(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not UUID_PATTERN.match(value):
            raise ValueError("itemId must be a UUID")
        return value


class JobResult(CamelModel):
    """Outcome of one job or direct-mode item."""
    item_id: str
    job_id: Optional[int] = None
    success: bool
    skipped: Optional[bool] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    error_category: Optional[ErrorCategory] = None
    duration_ms: Optional[int] = None


class BatchResult(BaseModel):
    """Batch runner summary."""
    processed: int = 0
    failed: int = 0
    results: List[JobResult] = []


class ProcessItemImageResponse(CamelModel):
    """Response schema for every status code of the endpoint."""
    success: bool
    processed: Optional[int] = None
    failed: Optional[int] = None
    skipped: Optional[int] = None
    recovered: Optional[int] = None
    results: Optional[List[JobResult]] = None
    error: Optional[str] = None
    code: Optional[str] = None
    correlation_id: Optional[str] = None


class HealthResponse(BaseModel):
    """Response schema for health check."""
    status: str
    database_connected: bool
    configuration_complete: bool
    missing_configuration: List[str] = []
