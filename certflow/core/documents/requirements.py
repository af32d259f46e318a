"""Required documents per application type."""

from __future__ import annotations

from pydantic import BaseModel

from certflow.common.enums import ApplicationType
from certflow.common.exceptions import BadRequestError, NotFoundError


class DocumentRequirement(BaseModel):
    id: str
    name: str
    category: str
    required: bool
    formats: list[str]
    max_size_mb: int

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024


def _req(id: str, name: str, category: str, required: bool, formats: list[str], max_size_mb: int) -> DocumentRequirement:
    return DocumentRequirement(
        id=id, name=name, category=category, required=required, formats=formats, max_size_mb=max_size_mb
    )


SLF_REQUIREMENTS: list[DocumentRequirement] = [
    _req("id_card", "Applicant ID Card", "identity", True, ["pdf", "jpg", "png"], 5),
    _req("tax_number", "Taxpayer Number (NPWP)", "identity", True, ["pdf", "jpg", "png"], 5),
    _req("land_certificate", "Land Certificate / Proof of Ownership", "legal", True, ["pdf"], 10),
    _req("previous_permit", "Previous Building Permit (IMB/PBG)", "permits", True, ["pdf"], 10),
    _req("as_built_drawing", "As-Built Drawings", "technical", True, ["pdf", "dwg"], 20),
    _req("technical_specification", "Building Technical Specification", "technical", True, ["pdf"], 10),
    _req("front_photo", "Building Photo (Front Elevation)", "documentation", True, ["jpg", "png"], 10),
    _req("interior_photo", "Interior Photos", "documentation", False, ["jpg", "png"], 10),
    _req("worthiness_statement", "Statement of Function Worthiness", "administrative", True, ["pdf"], 5),
    _req("technical_report", "Technical Report (if any)", "technical", False, ["pdf"], 20),
]

PBG_REQUIREMENTS: list[DocumentRequirement] = [
    _req("id_card", "Applicant ID Card", "identity", True, ["pdf", "jpg", "png"], 5),
    _req("tax_number", "Taxpayer Number (NPWP)", "identity", True, ["pdf", "jpg", "png"], 5),
    _req("business_number", "Business Identification Number (NIB)", "legal", True, ["pdf"], 5),
    _req("land_certificate", "Land Certificate / Proof of Ownership", "legal", True, ["pdf"], 10),
    _req("property_tax_receipt", "Property Tax Payment Receipt", "legal", True, ["pdf", "jpg"], 5),
    _req("design_drawing", "Architectural Design Drawings", "technical", True, ["pdf", "dwg"], 20),
    _req("technical_plan", "Building Technical Plan", "technical", True, ["pdf"], 20),
    _req("structural_calculation", "Structural Calculations", "technical", True, ["pdf"], 20),
    _req("site_plan", "Site Plan", "technical", True, ["pdf", "jpg"], 10),
    _req("city_plan_statement", "City Plan Statement (KRK)", "permits", False, ["pdf"], 10),
    _req("environmental_document", "Environmental Document (AMDAL / UKL-UPL)", "environment", False, ["pdf"], 20),
]

REQUIREMENTS: dict[ApplicationType, list[DocumentRequirement]] = {
    ApplicationType.SLF: SLF_REQUIREMENTS,
    ApplicationType.PBG: PBG_REQUIREMENTS,
}


def requirements_for(application_type: ApplicationType | str) -> list[DocumentRequirement]:
    return REQUIREMENTS[ApplicationType(application_type)]


def get_requirement(application_type: ApplicationType | str, requirement_id: str) -> DocumentRequirement:
    for requirement in requirements_for(application_type):
        if requirement.id == requirement_id:
            return requirement
    raise NotFoundError("Document requirement", requirement_id)


def file_extension(name: str) -> str:
    _, dot, ext = name.rpartition(".")
    return ext.lower() if dot else ""


def validate_upload(requirement: DocumentRequirement, filename: str, size_bytes: int | None) -> None:
    ext = file_extension(filename)
    if ext not in requirement.formats:
        raise BadRequestError(
            f"'{requirement.name}' must be one of: {', '.join(f.upper() for f in requirement.formats)}"
        )
    if size_bytes is not None and size_bytes > requirement.max_size_bytes:
        raise BadRequestError(f"'{requirement.name}' may be at most {requirement.max_size_mb}MB")
