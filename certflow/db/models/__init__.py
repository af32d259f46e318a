from certflow.db.models.approval import ApprovalChain, ApprovalDecision
from certflow.db.models.audit import AuditLog
from certflow.db.models.checklist import ChecklistResponse
from certflow.db.models.document import Document
from certflow.db.models.notification import Notification
from certflow.db.models.project import Project, ProjectTeamMember
from certflow.db.models.report import Report
from certflow.db.models.schedule import Schedule
from certflow.db.models.user import User

__all__ = [
    "ApprovalChain",
    "ApprovalDecision",
    "AuditLog",
    "ChecklistResponse",
    "Document",
    "Notification",
    "Project",
    "ProjectTeamMember",
    "Report",
    "Schedule",
    "User",
]
