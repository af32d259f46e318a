"""Approval chain definitions.

A chain is an ordered list of steps. Each step names the role that must
decide it and, optionally, an intermediate state the entity moves to when
that step approves. The last approval applies the entity's final approval
transition; any rejection applies its rejection transition.
"""

from __future__ import annotations

from pydantic import BaseModel

from certflow.common.enums import (
    DocumentStatus,
    EntityType,
    ProjectStatus,
    ReportStatus,
    UserRole,
)
from certflow.common.exceptions import BadRequestError
from certflow.core.workflow.transitions import find_rule


class ChainStep(BaseModel):
    role: UserRole
    advance_to: str | None = None


class ReviewTargets(BaseModel):
    review_state: str
    approve_to: str
    reject_to: str
    default_chain: str
    # open the default chain whenever the entity enters review_state
    auto_open: bool


REVIEW_TARGETS: dict[EntityType, ReviewTargets] = {
    EntityType.REPORT: ReviewTargets(
        review_state=ReportStatus.UNDER_REVIEW.value,
        approve_to=ReportStatus.APPROVED.value,
        reject_to=ReportStatus.REJECTED.value,
        default_chain="report_standard",
        auto_open=True,
    ),
    EntityType.DOCUMENT: ReviewTargets(
        review_state=DocumentStatus.UPLOADED.value,
        approve_to=DocumentStatus.APPROVED.value,
        reject_to=DocumentStatus.REJECTED.value,
        default_chain="document_standard",
        auto_open=True,
    ),
    EntityType.PROJECT: ReviewTargets(
        review_state=ProjectStatus.HEAD_CONSULTANT_REVIEW.value,
        approve_to=ProjectStatus.APPROVED_BY_ADMIN_LEAD.value,
        reject_to=ProjectStatus.REJECTED.value,
        default_chain="project_final",
        auto_open=False,
    ),
}

NAMED_CHAINS: dict[str, list[ChainStep]] = {
    "report_standard": [
        ChainStep(role=UserRole.PROJECT_LEAD),
        ChainStep(role=UserRole.ADMIN_LEAD),
        ChainStep(role=UserRole.HEAD_CONSULTANT),
    ],
    "report_low_risk": [
        ChainStep(role=UserRole.PROJECT_LEAD),
        ChainStep(role=UserRole.HEAD_CONSULTANT),
    ],
    "document_standard": [
        ChainStep(role=UserRole.ADMIN_TEAM, advance_to=DocumentStatus.VERIFIED.value),
        ChainStep(role=UserRole.PROJECT_LEAD),
    ],
    "project_final": [
        ChainStep(role=UserRole.HEAD_CONSULTANT),
    ],
}


def resolve_chain(chain: str | list[str] | list[ChainStep]) -> tuple[str | None, list[ChainStep]]:
    """Turn a chain name or an explicit role list into (name, steps)."""
    if isinstance(chain, str):
        steps = NAMED_CHAINS.get(chain)
        if steps is None:
            raise BadRequestError(
                f"Unknown approval chain '{chain}'. Available: {', '.join(sorted(NAMED_CHAINS))}"
            )
        return chain, [s.model_copy() for s in steps]

    if not chain:
        raise BadRequestError("An approval chain needs at least one step")
    steps = []
    for step in chain:
        if isinstance(step, ChainStep):
            steps.append(step)
            continue
        try:
            steps.append(ChainStep(role=UserRole(step)))
        except ValueError:
            raise BadRequestError(f"Unknown role '{step}' in approval chain") from None
    return None, steps


def validate_chain(entity_type: EntityType, steps: list[ChainStep]) -> None:
    """Walk the chain through the transition graph and check each step's role.

    Every step must be able to reject from the state it decides in, every
    intermediate ``advance_to`` must be a legal edge for that role, and the
    last step must be allowed to take the final approval edge.
    """
    targets = REVIEW_TARGETS.get(entity_type)
    if targets is None:
        raise BadRequestError(f"{entity_type.value} does not go through approval chains")

    state = targets.review_state
    for index, step in enumerate(steps):
        role = step.role.value
        reject = find_rule(entity_type, state, targets.reject_to)
        if reject is None or not reject.allows(role):
            raise BadRequestError(f"Role '{role}' cannot review a {entity_type.value} in '{state}'")

        last = index == len(steps) - 1
        if step.advance_to and not last:
            rule = find_rule(entity_type, state, step.advance_to)
            if rule is None or not rule.allows(role):
                raise BadRequestError(
                    f"Role '{role}' cannot move a {entity_type.value} from '{state}' to '{step.advance_to}'"
                )
            state = step.advance_to
        elif last:
            rule = find_rule(entity_type, state, targets.approve_to)
            if rule is None or not rule.allows(role):
                raise BadRequestError(
                    f"Role '{role}' cannot give final approval for a {entity_type.value}"
                )


def steps_to_json(steps: list[ChainStep]) -> list[dict]:
    return [{"role": s.role.value, "advance_to": s.advance_to} for s in steps]


def steps_from_json(data: list[dict]) -> list[ChainStep]:
    return [ChainStep(**d) for d in data]
