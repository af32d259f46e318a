"""Checklist template catalog used by field inspections.

Items are grouped by the inspection category they belong to. Each item lists
the typed columns an inspector fills in, in display order.
"""

from __future__ import annotations

import math
from typing import Any

from certflow.common.exceptions import BadRequestError, NotFoundError
from certflow.core.inspections.schemas import ChecklistColumn, ChecklistItem, ChecklistTemplate

_COMPLIANCE = ["Compliant", "Non-compliant"]
_COMPLETENESS = ["Complete", "Incomplete"]


def _document_columns() -> list[ChecklistColumn]:
    return [
        ChecklistColumn(name="completeness", type="radio", options=_COMPLETENESS, required=True),
        ChecklistColumn(name="conformity", type="radio_with_text", options=_COMPLIANCE, text_label="namely..."),
        ChecklistColumn(name="remarks", type="textarea"),
    ]


def _measured_columns(unit: str) -> list[ChecklistColumn]:
    return [
        ChecklistColumn(name="visual_observation", type="radio", options=_COMPLIANCE, required=True),
        ChecklistColumn(name="conformity", type="radio_with_text", options=_COMPLIANCE, text_label="namely..."),
        ChecklistColumn(name="measurement", type="input_number", unit=unit),
        ChecklistColumn(name="remarks", type="textarea"),
    ]


def _observed_columns() -> list[ChecklistColumn]:
    return [
        ChecklistColumn(name="visual_observation", type="radio", options=_COMPLIANCE, required=True),
        ChecklistColumn(name="test_result", type="textarea"),
        ChecklistColumn(name="photo", type="photo_geotag"),
        ChecklistColumn(name="remarks", type="textarea"),
    ]


CHECKLIST_TEMPLATES: list[ChecklistTemplate] = [
    ChecklistTemplate(
        id="document_completeness",
        title="Document Completeness Check",
        category="administrative",
        description="Administrative and technical documents required for the application.",
        items=[
            ChecklistItem(id="slf_application_letter", item_name="Function Worthiness Inspection Request Letter", columns=_document_columns()),
            ChecklistItem(id="land_title_proof", item_name="Proof of Land Title", columns=_document_columns()),
            ChecklistItem(id="building_ownership_proof", item_name="Proof of Building Ownership", columns=_document_columns()),
            ChecklistItem(id="building_permit", item_name="Building Permit and Technical Plan Attachments", columns=_document_columns()),
            ChecklistItem(id="construction_documents", item_name="Construction Execution Documents", columns=_document_columns()),
            ChecklistItem(id="as_built_drawings", item_name="As-built Drawings", columns=_document_columns()),
        ],
    ),
    ChecklistTemplate(
        id="building_intensity",
        title="Building Intensity Requirements",
        category="architecture",
        description="Coverage, floor area and green area coefficients.",
        items=[
            ChecklistItem(id="building_coverage_ratio", item_name="Building Coverage Ratio", columns=_measured_columns("%")),
            ChecklistItem(id="floor_area_ratio", item_name="Floor Area Ratio", columns=_measured_columns("%")),
            ChecklistItem(id="green_area_ratio", item_name="Green Area Ratio", columns=_measured_columns("m²")),
        ],
    ),
    ChecklistTemplate(
        id="architecture",
        title="Architectural Requirements",
        category="architecture",
        description="Setback lines, building height and distance between buildings.",
        items=[
            ChecklistItem(id="building_setback", item_name="Building Setback Line", columns=_measured_columns("cm")),
            ChecklistItem(id="building_height", item_name="Building Height", columns=_measured_columns("meter")),
            ChecklistItem(id="building_distance", item_name="Distance Between Buildings", columns=_measured_columns("meter")),
        ],
    ),
    ChecklistTemplate(
        id="structure",
        title="Structural Safety",
        category="structure",
        description="Foundation, columns, beams, slabs and roof framing.",
        items=[
            ChecklistItem(id="foundation", item_name="Foundation", columns=_observed_columns()),
            ChecklistItem(id="columns", item_name="Columns", columns=_observed_columns()),
            ChecklistItem(id="beams", item_name="Beams", columns=_observed_columns()),
            ChecklistItem(id="floor_slabs", item_name="Floor Slabs", columns=_observed_columns()),
            ChecklistItem(id="roof_frame", item_name="Roof Frame", columns=_observed_columns()),
        ],
    ),
    ChecklistTemplate(
        id="mep",
        title="Mechanical, Electrical & Plumbing",
        category="mep",
        description="Fire protection, electrical installation, lightning protection and plumbing.",
        items=[
            ChecklistItem(id="fire_protection", item_name="Active Fire Protection System", columns=_observed_columns()),
            ChecklistItem(id="electrical_installation", item_name="Electrical Installation", columns=_observed_columns()),
            ChecklistItem(id="lightning_protection", item_name="Lightning Protection", columns=_observed_columns()),
            ChecklistItem(id="clean_water", item_name="Clean Water System", columns=_observed_columns()),
            ChecklistItem(id="waste_water", item_name="Waste Water Drainage", columns=_observed_columns()),
        ],
    ),
]

_ITEMS: dict[str, ChecklistItem] = {
    item.id: item for template in CHECKLIST_TEMPLATES for item in template.items
}


def list_templates(category: str | None = None) -> list[ChecklistTemplate]:
    if category is None:
        return list(CHECKLIST_TEMPLATES)
    return [t for t in CHECKLIST_TEMPLATES if t.category == category]


def get_item(item_id: str) -> ChecklistItem:
    item = _ITEMS.get(item_id)
    if item is None:
        raise NotFoundError("Checklist item", item_id)
    return item


def _check_photo(name: str, value: Any) -> None:
    if not isinstance(value, dict) or not value.get("url"):
        raise BadRequestError(f"Column '{name}' expects a photo object with a url")
    for coord, bound in (("latitude", 90), ("longitude", 180)):
        v = value.get(coord)
        if not isinstance(v, (int, float)) or isinstance(v, bool) or abs(v) > bound:
            raise BadRequestError(f"Column '{name}' photo must carry a valid {coord}")


def validate_response(item: ChecklistItem, response: dict[str, Any]) -> dict[str, Any]:
    """Check a response payload against the item's column schema.

    Unknown columns are rejected. Returns the payload unchanged when valid.
    """
    columns = {c.name: c for c in item.columns}
    unknown = set(response) - set(columns)
    if unknown:
        raise BadRequestError(f"Unknown column(s) for item '{item.id}': {', '.join(sorted(unknown))}")

    for column in item.columns:
        value = response.get(column.name)
        if value is None or value == "":
            if column.required:
                raise BadRequestError(f"Column '{column.name}' is required for item '{item.id}'")
            continue

        if column.type == "radio":
            if value not in column.options:
                raise BadRequestError(f"Column '{column.name}' must be one of: {', '.join(column.options)}")
        elif column.type == "radio_with_text":
            if not isinstance(value, dict) or value.get("option") not in column.options:
                raise BadRequestError(
                    f"Column '{column.name}' expects {{option, text}} with option in: {', '.join(column.options)}"
                )
            if value.get("text") is not None and not isinstance(value["text"], str):
                raise BadRequestError(f"Column '{column.name}' text must be a string")
        elif column.type == "textarea":
            if not isinstance(value, str):
                raise BadRequestError(f"Column '{column.name}' must be text")
        elif column.type == "input_number":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise BadRequestError(f"Column '{column.name}' must be a number")
        elif column.type == "photo_geotag":
            photos = value if isinstance(value, list) else [value]
            for photo in photos:
                _check_photo(column.name, photo)

    return response
