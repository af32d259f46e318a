"""Transition graphs for every workflow entity.

One table per entity type lists each legal edge, the roles allowed to take
it and the payload fields it needs. Everything that changes a status goes
through ``validate_transition``.
"""

from __future__ import annotations

from typing import Any

from certflow.common.enums import (
    DocumentStatus,
    EntityType,
    ProjectStatus,
    ReportStatus,
    ScheduleStatus,
    UserRole,
)
from certflow.common.exceptions import (
    IllegalTransitionError,
    MissingPayloadError,
    UnauthorizedTransitionError,
)
from certflow.common.logging import get_logger
from certflow.core.workflow.schemas import TransitionRule

logger = get_logger("workflow.transitions")

P = ProjectStatus
R = ReportStatus
D = DocumentStatus
S = ScheduleStatus


def _rule(
    entity_type: EntityType,
    source: str,
    target: str,
    roles: list[UserRole],
    action: str,
    **kwargs: Any,
) -> TransitionRule:
    return TransitionRule(
        entity_type=entity_type,
        source=source,
        target=target,
        roles=roles,
        action=action,
        **kwargs,
    )


def _cancel_edges(
    entity_type: EntityType, sources: list[str], target: str, roles: list[UserRole]
) -> list[TransitionRule]:
    return [_rule(entity_type, s, target, roles, "cancel") for s in sources]


_PROJECT = EntityType.PROJECT

PROJECT_TRANSITIONS: list[TransitionRule] = [
    _rule(_PROJECT, P.DRAFT, P.SUBMITTED, [UserRole.CLIENT, UserRole.ADMIN_LEAD], "submit"),
    _rule(_PROJECT, P.SUBMITTED, P.PROJECT_LEAD_REVIEW, [UserRole.ADMIN_LEAD, UserRole.ADMIN_TEAM], "forward_to_project_lead"),
    _rule(_PROJECT, P.PROJECT_LEAD_REVIEW, P.INSPECTION_SCHEDULED, [UserRole.PROJECT_LEAD], "schedule_inspection"),
    _rule(_PROJECT, P.PROJECT_LEAD_REVIEW, P.REJECTED, [UserRole.PROJECT_LEAD], "reject", required_payload=["notes"]),
    _rule(_PROJECT, P.INSPECTION_SCHEDULED, P.INSPECTION_IN_PROGRESS, [UserRole.INSPECTOR, UserRole.PROJECT_LEAD], "start_inspection"),
    _rule(_PROJECT, P.INSPECTION_IN_PROGRESS, P.INSPECTION_COMPLETED, [UserRole.INSPECTOR, UserRole.PROJECT_LEAD], "complete_inspection"),
    _rule(_PROJECT, P.INSPECTION_COMPLETED, P.REPORT_SUBMITTED, [UserRole.DRAFTER, UserRole.PROJECT_LEAD], "submit_report"),
    _rule(_PROJECT, P.REPORT_SUBMITTED, P.HEAD_CONSULTANT_REVIEW, [UserRole.PROJECT_LEAD], "forward_to_head_consultant"),
    _rule(_PROJECT, P.HEAD_CONSULTANT_REVIEW, P.APPROVED_BY_ADMIN_LEAD, [UserRole.HEAD_CONSULTANT], "approve", chain_controlled=True),
    _rule(_PROJECT, P.HEAD_CONSULTANT_REVIEW, P.REJECTED, [UserRole.HEAD_CONSULTANT], "reject", required_payload=["notes"], chain_controlled=True),
    _rule(_PROJECT, P.APPROVED_BY_ADMIN_LEAD, P.GOVERNMENT_SUBMITTED, [UserRole.ADMIN_LEAD], "submit_to_government"),
    _rule(_PROJECT, P.GOVERNMENT_SUBMITTED, P.SLF_ISSUED, [UserRole.ADMIN_LEAD], "record_certificate"),
    _rule(_PROJECT, P.SLF_ISSUED, P.COMPLETED, [UserRole.ADMIN_LEAD], "complete"),
    # rejection loops back to whoever produced the reviewed work
    _rule(_PROJECT, P.REJECTED, P.DRAFT, [UserRole.CLIENT, UserRole.ADMIN_LEAD], "rework",
          only_if_rejected_from=P.PROJECT_LEAD_REVIEW.value),
    _rule(_PROJECT, P.REJECTED, P.INSPECTION_COMPLETED, [UserRole.DRAFTER, UserRole.PROJECT_LEAD], "rework",
          only_if_rejected_from=P.HEAD_CONSULTANT_REVIEW.value),
]
PROJECT_TRANSITIONS += _cancel_edges(
    _PROJECT,
    [s.value for s in ProjectStatus if s not in (P.COMPLETED, P.CANCELLED)],
    P.CANCELLED,
    [UserRole.ADMIN_LEAD, UserRole.SUPERADMIN],
)

_REPORT = EntityType.REPORT
_REVIEWERS = [UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD, UserRole.HEAD_CONSULTANT]

REPORT_TRANSITIONS: list[TransitionRule] = [
    _rule(_REPORT, R.DRAFT, R.SUBMITTED, [UserRole.DRAFTER, UserRole.INSPECTOR], "submit"),
    _rule(_REPORT, R.SUBMITTED, R.UNDER_REVIEW, [UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD], "open_review"),
    _rule(_REPORT, R.UNDER_REVIEW, R.APPROVED, _REVIEWERS, "approve", chain_controlled=True),
    _rule(_REPORT, R.UNDER_REVIEW, R.REJECTED, _REVIEWERS, "reject", required_payload=["notes"], chain_controlled=True),
    _rule(_REPORT, R.REJECTED, R.DRAFT, [UserRole.DRAFTER, UserRole.INSPECTOR], "rework"),
    _rule(_REPORT, R.APPROVED, R.COMPLETED, [UserRole.ADMIN_LEAD], "complete"),
]
REPORT_TRANSITIONS += _cancel_edges(
    _REPORT,
    [R.DRAFT.value, R.SUBMITTED.value, R.UNDER_REVIEW.value],
    R.CANCELLED,
    [UserRole.ADMIN_LEAD, UserRole.PROJECT_LEAD],
)

_DOCUMENT = EntityType.DOCUMENT
_UPLOADERS = [
    UserRole.CLIENT,
    UserRole.DRAFTER,
    UserRole.INSPECTOR,
    UserRole.PROJECT_LEAD,
    UserRole.ADMIN_TEAM,
    UserRole.ADMIN_LEAD,
]

DOCUMENT_TRANSITIONS: list[TransitionRule] = [
    _rule(_DOCUMENT, D.PENDING, D.UPLOADED, _UPLOADERS, "upload", required_payload=["file_url"]),
    # replaced in place while still waiting for its first review decision
    _rule(_DOCUMENT, D.UPLOADED, D.UPLOADED, _UPLOADERS, "replace", required_payload=["file_url"]),
    _rule(_DOCUMENT, D.UPLOADED, D.VERIFIED, [UserRole.ADMIN_TEAM, UserRole.ADMIN_LEAD], "verify", chain_controlled=True),
    _rule(_DOCUMENT, D.UPLOADED, D.APPROVED, [UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD], "approve", chain_controlled=True),
    _rule(_DOCUMENT, D.VERIFIED, D.APPROVED, [UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD], "approve", chain_controlled=True),
    _rule(_DOCUMENT, D.UPLOADED, D.REJECTED, [UserRole.ADMIN_TEAM, UserRole.ADMIN_LEAD, UserRole.PROJECT_LEAD],
          "reject", required_payload=["notes"], chain_controlled=True),
    _rule(_DOCUMENT, D.VERIFIED, D.REJECTED, [UserRole.ADMIN_TEAM, UserRole.ADMIN_LEAD, UserRole.PROJECT_LEAD],
          "reject", required_payload=["notes"], chain_controlled=True),
    _rule(_DOCUMENT, D.REJECTED, D.UPLOADED, _UPLOADERS, "reupload", required_payload=["file_url"]),
]

_SCHEDULE = EntityType.SCHEDULE

SCHEDULE_TRANSITIONS: list[TransitionRule] = [
    # any role may hold an assignment; the engine restricts these to the assignee
    _rule(_SCHEDULE, S.SCHEDULED, S.IN_PROGRESS, list(UserRole), "start", required_payload=["location"]),
    _rule(_SCHEDULE, S.IN_PROGRESS, S.COMPLETED, list(UserRole), "complete"),
]
SCHEDULE_TRANSITIONS += _cancel_edges(
    _SCHEDULE,
    [S.SCHEDULED.value, S.IN_PROGRESS.value],
    S.CANCELLED,
    [UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD],
)

TRANSITIONS: dict[EntityType, list[TransitionRule]] = {
    EntityType.PROJECT: PROJECT_TRANSITIONS,
    EntityType.REPORT: REPORT_TRANSITIONS,
    EntityType.DOCUMENT: DOCUMENT_TRANSITIONS,
    EntityType.SCHEDULE: SCHEDULE_TRANSITIONS,
}

STATES: dict[EntityType, set[str]] = {
    EntityType.PROJECT: {s.value for s in ProjectStatus},
    EntityType.REPORT: {s.value for s in ReportStatus},
    EntityType.DOCUMENT: {s.value for s in DocumentStatus},
    EntityType.SCHEDULE: {s.value for s in ScheduleStatus},
}

TERMINAL_STATES: dict[EntityType, set[str]] = {
    EntityType.PROJECT: {P.COMPLETED.value, P.CANCELLED.value},
    EntityType.REPORT: {R.COMPLETED.value, R.CANCELLED.value},
    EntityType.DOCUMENT: {D.APPROVED.value},
    EntityType.SCHEDULE: {S.COMPLETED.value, S.CANCELLED.value},
}


def rules_for(entity_type: EntityType, source: str) -> list[TransitionRule]:
    return [r for r in TRANSITIONS[entity_type] if r.source == source]


def successors(entity_type: EntityType, state: str, rejected_from: str | None = None) -> list[str]:
    targets: list[str] = []
    for rule in rules_for(entity_type, state):
        if rule.only_if_rejected_from and rule.only_if_rejected_from != rejected_from:
            continue
        if rule.target not in targets:
            targets.append(rule.target)
    return targets


def find_rule(
    entity_type: EntityType, current: str, target: str, rejected_from: str | None = None
) -> TransitionRule | None:
    for rule in rules_for(entity_type, current):
        if rule.target != target:
            continue
        if rule.only_if_rejected_from and rule.only_if_rejected_from != rejected_from:
            continue
        return rule
    return None


def next_actor_roles(entity_type: EntityType, state: str, rejected_from: str | None = None) -> set[str]:
    """Roles that can move an entity out of ``state``, ignoring cancellation."""
    roles: set[str] = set()
    for rule in rules_for(entity_type, state):
        if rule.action == "cancel":
            continue
        if rule.only_if_rejected_from and rule.only_if_rejected_from != rejected_from:
            continue
        roles.update(r.value for r in rule.roles)
    return roles


def _missing(payload: dict[str, Any], field: str) -> bool:
    value = payload.get(field)
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def validate_transition(
    entity_type: EntityType,
    current: str,
    target: str,
    role: str,
    payload: dict[str, Any] | None = None,
    rejected_from: str | None = None,
    *,
    check_role: bool = True,
) -> TransitionRule:
    """Return the rule for ``current -> target`` or raise the specific failure."""
    payload = payload or {}
    entity = entity_type.value

    if target not in STATES[entity_type]:
        raise IllegalTransitionError(entity, current, target, "unknown state")
    if current in TERMINAL_STATES[entity_type]:
        raise IllegalTransitionError(entity, current, target, f"'{current}' is a final state")

    rule = find_rule(entity_type, current, target, rejected_from)
    if rule is None:
        allowed = successors(entity_type, current, rejected_from)
        raise IllegalTransitionError(
            entity, current, target,
            f"allowed next states are {', '.join(allowed) or 'none'}",
        )

    if check_role and not rule.allows(role):
        raise UnauthorizedTransitionError(
            f"Role '{role}' may not {rule.action.replace('_', ' ')} a {entity} "
            f"({current} -> {target}); requires one of: {', '.join(r.value for r in rule.roles)}"
        )

    for field in rule.required_payload:
        if _missing(payload, field):
            if field == "notes":
                raise MissingPayloadError("notes", f"{rule.action.replace('_', ' ').capitalize()} requires notes")
            raise MissingPayloadError(field)

    logger.debug("Validated %s transition %s -> %s by %s", entity, current, target, role)
    return rule
