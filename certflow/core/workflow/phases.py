"""Map project statuses onto the five certification phases shown to clients."""

from certflow.common.enums import ProjectStatus
from certflow.core.workflow.schemas import PhaseInfo

PHASE_NAMES = {
    0: "Closed",
    1: "Preparation",
    2: "Inspection",
    3: "Report & Review",
    4: "Approval",
    5: "Government Submission",
}

STATUS_PHASE: dict[str, int] = {
    ProjectStatus.DRAFT.value: 1,
    ProjectStatus.SUBMITTED.value: 1,
    ProjectStatus.PROJECT_LEAD_REVIEW.value: 1,
    ProjectStatus.INSPECTION_SCHEDULED.value: 2,
    ProjectStatus.INSPECTION_IN_PROGRESS.value: 2,
    ProjectStatus.INSPECTION_COMPLETED.value: 2,
    ProjectStatus.REPORT_SUBMITTED.value: 3,
    ProjectStatus.HEAD_CONSULTANT_REVIEW.value: 3,
    ProjectStatus.APPROVED_BY_ADMIN_LEAD.value: 4,
    ProjectStatus.GOVERNMENT_SUBMITTED.value: 5,
    ProjectStatus.SLF_ISSUED.value: 5,
    ProjectStatus.COMPLETED.value: 5,
    ProjectStatus.REJECTED.value: 0,
    ProjectStatus.CANCELLED.value: 0,
}


def phase_for(status: str) -> PhaseInfo:
    number = STATUS_PHASE.get(status, 0)
    return PhaseInfo(number=number, name=PHASE_NAMES[number], progress=number * 20)
