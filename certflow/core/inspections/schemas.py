from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from certflow.common.enums import ChecklistResponseStatus, GeolocationFailure


# ---------- location capture ----------


class GpsLocation(BaseModel):
    type: Literal["gps"] = "gps"
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0, description="Meters")
    captured_at: datetime | None = None


class ManualLocation(BaseModel):
    type: Literal["manual"] = "manual"
    note: str = Field(..., min_length=1, max_length=1000)
    reason: GeolocationFailure | None = None

    @field_validator("note")
    @classmethod
    def note_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("A manual location needs a description of where the inspection took place")
        return v.strip()


LocationCapture = Annotated[Union[GpsLocation, ManualLocation], Field(discriminator="type")]

location_adapter: TypeAdapter[GpsLocation | ManualLocation] = TypeAdapter(LocationCapture)


class LocationPolicy(BaseModel):
    enable_high_accuracy: bool = True
    timeout_seconds: int
    maximum_age_seconds: int = 0
    manual_fallback_reasons: list[GeolocationFailure] = list(GeolocationFailure)


# ---------- checklist templates ----------


class ChecklistColumn(BaseModel):
    name: str
    type: Literal["radio", "radio_with_text", "textarea", "input_number", "photo_geotag"]
    options: list[str] = []
    text_label: str | None = None
    unit: str | None = None
    required: bool = False


class ChecklistItem(BaseModel):
    id: str
    item_name: str
    columns: list[ChecklistColumn]


class ChecklistTemplate(BaseModel):
    id: str
    title: str
    category: str
    description: str = ""
    items: list[ChecklistItem]


# ---------- responses ----------


class ChecklistAnswer(BaseModel):
    response: dict[str, Any]
    status: ChecklistResponseStatus = ChecklistResponseStatus.DRAFT


class ChecklistBatchEntry(ChecklistAnswer):
    item_id: str


class ChecklistBatch(BaseModel):
    items: list[ChecklistBatchEntry] = Field(..., min_length=1)


class ChecklistResponseOut(BaseModel):
    id: uuid.UUID
    schedule_id: uuid.UUID
    item_id: str
    responder_id: uuid.UUID
    response: dict[str, Any]
    status: str
    updated_at: datetime | None = None
