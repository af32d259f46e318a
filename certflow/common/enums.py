import enum


class UserRole(str, enum.Enum):
    CLIENT = "client"
    INSPECTOR = "inspector"
    DRAFTER = "drafter"
    PROJECT_LEAD = "project_lead"
    ADMIN_TEAM = "admin_team"
    ADMIN_LEAD = "admin_lead"
    HEAD_CONSULTANT = "head_consultant"
    SUPERADMIN = "superadmin"


ADMIN_ROLES = frozenset({
    UserRole.ADMIN_LEAD,
    UserRole.ADMIN_TEAM,
    UserRole.HEAD_CONSULTANT,
    UserRole.SUPERADMIN,
})


class InspectorSpecialization(str, enum.Enum):
    STRUCTURE = "structure"
    ARCHITECTURE = "architecture"
    MEP = "mep"


class ApplicationType(str, enum.Enum):
    SLF = "slf"
    PBG = "pbg"


class EntityType(str, enum.Enum):
    PROJECT = "project"
    REPORT = "report"
    DOCUMENT = "document"
    SCHEDULE = "schedule"


class ProjectStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PROJECT_LEAD_REVIEW = "project_lead_review"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    INSPECTION_IN_PROGRESS = "inspection_in_progress"
    INSPECTION_COMPLETED = "inspection_completed"
    REPORT_SUBMITTED = "report_submitted"
    HEAD_CONSULTANT_REVIEW = "head_consultant_review"
    APPROVED_BY_ADMIN_LEAD = "approved_by_admin_lead"
    GOVERNMENT_SUBMITTED = "government_submitted"
    SLF_ISSUED = "slf_issued"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ReportStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADED = "uploaded"
    VERIFIED = "verified"
    APPROVED = "approved"
    REJECTED = "rejected"


class ScheduleStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ScheduleType(str, enum.Enum):
    INSPECTION = "inspection"
    REPORT_DRAFTING = "report_drafting"
    MEETING = "meeting"
    CONSULTATION = "consultation"


class ChecklistResponseStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"


class ChainStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class ApprovalDecisionType(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class LocationCaptureType(str, enum.Enum):
    GPS = "gps"
    MANUAL = "manual"


class GeolocationFailure(str, enum.Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    POSITION_UNAVAILABLE = "POSITION_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"


class NotificationType(str, enum.Enum):
    PROJECT_UPDATE = "project_update"
    APPROVAL_REQUIRED = "approval_required"
    APPROVAL_GRANTED = "approval_granted"
    REVISION_REQUESTED = "revision_requested"
    SCHEDULE_ASSIGNED = "schedule_assigned"
    REPORT_ASSIGNED = "report_assigned"
    DOCUMENT_UPDATE = "document_update"
    INSPECTION_UPDATE = "inspection_update"
    SYSTEM = "system"
