"""Pydantic schemas for upload, template and job endpoints."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ingest.issues import ValidationReport
from ingest.pipeline import FilePreview
from ingest.templates.matching import TemplateMatch
from ingest.templates.schema import ValidationRule


class JobStatus(str, Enum):
    PARSING = "PARSING"
    VALIDATING = "VALIDATING"
    NEEDS_MAPPING = "NEEDS_MAPPING"
    GPT_NORMALIZE = "GPT_NORMALIZE"
    GPT_PROCESSING = "GPT_PROCESSING"
    LOADING = "LOADING"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"
    PARTIAL_OK = "PARTIAL_OK"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.DONE, JobStatus.PARTIAL_OK, JobStatus.FAILED}


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: JobStatus
    job_type: str
    company_id: str | None = None
    template_name: str | None = None
    stats_json: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UploadResponse(BaseModel):
    success: bool
    job_id: str | None = None
    dry_run: bool = False
    needs_mapping: bool = False
    template_name: str | None = None
    detected_years: list[int] = Field(default_factory=list)
    lines_loaded: int = 0
    validation_results: ValidationReport = Field(default_factory=ValidationReport)
    preview: FilePreview | None = None
    suggested_mappings: dict[str, str] = Field(default_factory=dict)


class BundleAccepted(BaseModel):
    job_id: str
    status: Literal["accepted"] = "accepted"
    files: list[str] = Field(default_factory=list)


class MappingRequest(BaseModel):
    """Manual header-to-column mapping for a job awaiting mapping."""

    mapping: dict[str, str] = Field(..., min_length=1, description="File header -> template column name.")
    template_name: str | None = Field(default=None, description="Template to validate against.")


class DetectResponse(BaseModel):
    preview: FilePreview
    matches: list[TemplateMatch] = Field(default_factory=list)


class TemplateSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    display_name: str
    description: str | None = None
    category: str
    version: int
    is_required: bool


class CustomizationRequest(BaseModel):
    custom_schema: dict[str, Any] | None = None
    custom_validations: list[ValidationRule] = Field(default_factory=list)
    custom_display_name: str | None = None
    notes: str | None = None
    is_active: bool = True
