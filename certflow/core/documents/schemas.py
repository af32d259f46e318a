import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from certflow.common.enums import ApplicationType


class DocumentUpload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    filename: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1, max_length=1000)
    requirement_id: str | None = None
    category: str | None = None
    content_type: str | None = None
    size_bytes: int | None = Field(default=None, ge=0)
    # only used for unattached client submissions
    application_type: ApplicationType | None = None


class DocumentReupload(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1, max_length=1000)
    content_type: str | None = None
    size_bytes: int | None = Field(default=None, ge=0)
    expected_version: int | None = None


class RequirementStatusEntry(BaseModel):
    requirement_id: str
    name: str
    category: str
    required: bool
    formats: list[str]
    max_size_mb: int
    document_id: uuid.UUID | None = None
    status: str | None = None
    revision: int | None = None
    uploaded_at: datetime | None = None


class RequirementStatus(BaseModel):
    application_type: ApplicationType
    entries: list[RequirementStatusEntry]
    required_total: int
    required_approved: int
    complete: bool
