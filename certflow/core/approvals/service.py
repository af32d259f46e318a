"""Approval coordinator: multi-step review chains for reports, documents and projects."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.common.enums import (
    ApprovalDecisionType,
    ChainStatus,
    EntityType,
    NotificationType,
)
from certflow.common.exceptions import (
    BadRequestError,
    ChainInProgressError,
    IllegalTransitionError,
    MissingPayloadError,
    StaleStateError,
    UnauthorizedTransitionError,
)
from certflow.common.logging import get_logger
from certflow.core.approvals.chains import (
    REVIEW_TARGETS,
    ChainStep,
    resolve_chain,
    steps_from_json,
    steps_to_json,
    validate_chain,
)
from certflow.core.approvals.schemas import ApprovalChainOut, ApprovalDecisionOut, ChainStepOut
from certflow.core.notifications.schemas import NotificationEvent
from certflow.core.workflow.service import (
    WorkflowEngine,
    entity_label,
    split_audience,
    state_value,
)
from certflow.db.models.approval import ApprovalChain, ApprovalDecision
from certflow.db.models.user import User

logger = get_logger("approvals.service")


def chain_to_response(chain: ApprovalChain, decisions: list[ApprovalDecision] | None = None) -> ApprovalChainOut:
    steps = chain.steps or []
    awaiting = None
    if state_value(chain.status) == ChainStatus.IN_PROGRESS.value and chain.current_step < len(steps):
        awaiting = steps[chain.current_step]["role"]
    return ApprovalChainOut(
        id=chain.id,
        entity_type=chain.entity_type,
        entity_id=chain.entity_id,
        name=chain.name,
        steps=[ChainStepOut(**s) for s in steps],
        current_step=chain.current_step,
        status=state_value(chain.status),
        awaiting_role=awaiting,
        submitted_by=chain.submitted_by,
        created_at=chain.created_at,
        decisions=[
            ApprovalDecisionOut(
                id=d.id,
                step_index=d.step_index,
                role=d.role,
                decided_by=d.decided_by,
                decision=d.decision,
                notes=d.notes,
                created_at=d.created_at,
            )
            for d in decisions or []
        ],
    )


class ApprovalCoordinator:
    def __init__(self, db: AsyncSession, engine: WorkflowEngine | None = None):
        self.db = db
        self.engine = engine or WorkflowEngine(db)
        self.store = self.engine.store

    async def open_chain(self, entity_type: EntityType, entity_id: uuid.UUID) -> ApprovalChain | None:
        result = await self.db.execute(
            select(ApprovalChain)
            .where(
                ApprovalChain.entity_type == entity_type.value,
                ApprovalChain.entity_id == entity_id,
                ApprovalChain.status == ChainStatus.IN_PROGRESS.value,
                ApprovalChain.is_deleted.is_(False),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def cancel_open_chains(
        self, entity_type: EntityType, entity_id: uuid.UUID, actor: User | None
    ) -> int:
        closed = 0
        chain = await self.open_chain(entity_type, entity_id)
        while chain is not None:
            if await self.store.guarded_update(
                ApprovalChain, chain.id,
                {"status": ChainStatus.IN_PROGRESS.value},
                {"status": ChainStatus.CANCELLED.value},
            ):
                await self.store.add_audit(
                    entity_type.value, entity_id, "chain_cancelled", actor,
                    diff={"chain_id": str(chain.id), "step": chain.current_step},
                )
                closed += 1
            chain = await self.open_chain(entity_type, entity_id)
        return closed

    async def _create_chain(
        self,
        entity_type: EntityType,
        entity: Any,
        name: str | None,
        steps: list[ChainStep],
        actor: User | None,
    ) -> ApprovalChain:
        chain = ApprovalChain(
            entity_type=entity_type.value,
            entity_id=entity.id,
            name=name,
            steps=steps_to_json(steps),
            current_step=0,
            status=ChainStatus.IN_PROGRESS.value,
            submitted_by=actor.id if actor else entity_submitter(entity_type, entity),
        )
        self.store.add(chain)
        await self.store.flush()
        await self.db.refresh(chain)
        await self.store.add_audit(
            entity_type.value, entity.id, "chain_opened", actor,
            diff={"chain_id": str(chain.id), "name": name, "steps": chain.steps},
        )
        logger.info(
            "Opened approval chain %s (%s) for %s %s: %s",
            chain.id, name or "custom", entity_type.value, entity.id,
            " -> ".join(s.role.value for s in steps),
        )
        return chain

    async def open_default_chain(
        self, entity_type: EntityType, entity: Any, state: str, actor: User | None
    ) -> ApprovalChain | None:
        """Called by the engine after every transition; opens a chain on review entry."""
        targets = REVIEW_TARGETS.get(entity_type)
        if targets is None or not targets.auto_open or state != targets.review_state:
            return None
        existing = await self.open_chain(entity_type, entity.id)
        if existing is not None:
            return existing
        name, steps = resolve_chain(targets.default_chain)
        return await self._create_chain(entity_type, entity, name, steps, actor)

    async def submit_for_review(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        chain: str | list[str],
        actor: User,
        expected_version: int | None = None,
    ) -> ApprovalChain:
        targets = REVIEW_TARGETS.get(entity_type)
        if targets is None:
            raise BadRequestError(f"{entity_type.value} does not go through approval chains")

        entity = await self.engine.load(entity_type, entity_id, actor)
        if entity_type != EntityType.PROJECT:
            await self.engine.ensure_project_open(
                entity_type, entity.project_id, state_value(entity.status), targets.review_state
            )
        name, steps = resolve_chain(chain)
        validate_chain(entity_type, steps)

        existing = await self.open_chain(entity_type, entity.id)
        if existing is not None:
            if existing.steps == steps_to_json(steps):
                logger.info("Review already in progress for %s %s; returning chain %s",
                            entity_type.value, entity.id, existing.id)
                return existing
            raise ChainInProgressError(entity_type.value, str(entity.id))

        if expected_version is not None and expected_version != entity.version:
            raise StaleStateError(entity_type.value, str(entity.id))

        if state_value(entity.status) != targets.review_state:
            await self.engine.apply(
                entity_type, entity, targets.review_state, actor,
                expected_version=expected_version, via_chain=True, notify=False,
            )

        created = await self._create_chain(entity_type, entity, name, steps, actor)
        await self._notify_step(entity_type, entity, steps[0], actor)
        return created

    async def record_decision(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        actor: User,
        decision: ApprovalDecisionType | str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalChain:
        decision = ApprovalDecisionType(decision)
        targets = REVIEW_TARGETS.get(entity_type)
        if targets is None:
            raise BadRequestError(f"{entity_type.value} does not go through approval chains")

        entity = await self.engine.load(entity_type, entity_id, actor)
        current = state_value(entity.status)
        target = targets.approve_to if decision == ApprovalDecisionType.APPROVED else targets.reject_to

        chain = await self.open_chain(entity_type, entity.id)
        if chain is None:
            raise IllegalTransitionError(entity_type.value, current, target, "no approval chain is open")

        steps = steps_from_json(chain.steps)
        if actor.role not in {s.role.value for s in steps}:
            raise UnauthorizedTransitionError(
                f"Role '{actor.role}' is not part of this approval chain "
                f"({' -> '.join(s.role.value for s in steps)})"
            )

        index = chain.current_step
        step = steps[index]
        if step.role.value != actor.role:
            raise IllegalTransitionError(
                entity_type.value, current, target,
                f"awaiting decision from {step.role.value} (step {index + 1} of {len(steps)})",
            )

        if decision == ApprovalDecisionType.REJECTED and (not notes or not notes.strip()):
            raise MissingPayloadError("notes", "Rejection requires notes")

        if expected_version is not None and expected_version != entity.version:
            raise StaleStateError(entity_type.value, str(entity.id))

        last = index == len(steps) - 1
        if decision == ApprovalDecisionType.REJECTED:
            chain_values = {"status": ChainStatus.RETURNED.value}
        elif last:
            chain_values = {"status": ChainStatus.APPROVED.value, "current_step": index + 1}
        else:
            chain_values = {"current_step": index + 1}

        # claim the step; a concurrent decision on the same step loses here
        claimed = await self.store.guarded_update(
            ApprovalChain, chain.id,
            {"current_step": index, "status": ChainStatus.IN_PROGRESS.value},
            chain_values,
        )
        if not claimed:
            raise StaleStateError("ApprovalChain", str(chain.id))

        self.store.add(ApprovalDecision(
            chain_id=chain.id,
            step_index=index,
            role=actor.role,
            decided_by=actor.id,
            decision=decision.value,
            notes=notes,
        ))
        await self.store.flush()

        if decision == ApprovalDecisionType.REJECTED:
            await self.engine.apply(
                entity_type, entity, targets.reject_to, actor, {"notes": notes}, via_chain=True,
            )
        elif last:
            payload = {"notes": notes} if notes else {}
            await self.engine.apply(
                entity_type, entity, targets.approve_to, actor, payload, via_chain=True,
            )
        else:
            if step.advance_to:
                await self.engine.apply(
                    entity_type, entity, step.advance_to, actor, via_chain=True, notify=False,
                )
            else:
                await self.store.add_audit(
                    entity_type.value, entity.id, "chain_step_approved", actor,
                    current, current, {"chain_id": str(chain.id), "step": index, "notes": notes},
                )
            await self._notify_step(entity_type, entity, steps[index + 1], actor)

        await self.db.refresh(chain)
        logger.info(
            "Chain %s step %d/%d %s by %s (%s)",
            chain.id, index + 1, len(steps), decision.value, actor.id, actor.role,
        )
        return chain

    async def chain_history(
        self, entity_type: EntityType, entity_id: uuid.UUID, actor: User
    ) -> list[tuple[ApprovalChain, list[ApprovalDecision]]]:
        await self.engine.load(entity_type, entity_id, actor)
        result = await self.db.execute(
            select(ApprovalChain)
            .where(
                ApprovalChain.entity_type == entity_type.value,
                ApprovalChain.entity_id == entity_id,
                ApprovalChain.is_deleted.is_(False),
            )
            .order_by(ApprovalChain.created_at)
        )
        chains = list(result.scalars().all())

        history = []
        for chain in chains:
            decisions = await self.db.execute(
                select(ApprovalDecision)
                .where(ApprovalDecision.chain_id == chain.id)
                .order_by(ApprovalDecision.step_index, ApprovalDecision.created_at)
            )
            history.append((chain, list(decisions.scalars().all())))
        return history

    async def _notify_step(
        self, entity_type: EntityType, entity: Any, step: ChainStep, actor: User | None
    ) -> None:
        global_roles, project_roles = split_audience({step.role.value})
        project_id = entity.id if entity_type == EntityType.PROJECT else entity.project_id
        label = entity_label(entity_type, entity)
        await self.engine.notifications.notify(NotificationEvent(
            category=NotificationType.APPROVAL_REQUIRED,
            title=f"{label} awaits your approval",
            body=f"{label} is waiting for a decision from {step.role.value.replace('_', ' ')}.",
            sender_id=actor.id if actor else None,
            project_id=project_id,
            related_type=entity_type.value,
            related_id=entity.id,
            roles=global_roles,
            project_roles=project_roles if project_id else [],
        ))


def entity_submitter(entity_type: EntityType, entity: Any) -> uuid.UUID:
    if entity_type == EntityType.REPORT:
        return entity.drafter_id
    if entity_type == EntityType.DOCUMENT:
        return entity.uploaded_by
    return entity.client_id
