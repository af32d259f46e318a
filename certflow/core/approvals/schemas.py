import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from certflow.common.enums import ApprovalDecisionType


class SubmitForReviewRequest(BaseModel):
    chain: str | list[str] = Field(
        default="report_standard",
        description="Named chain or an explicit ordered list of reviewer roles",
    )
    expected_version: int | None = None


class DecisionRequest(BaseModel):
    decision: ApprovalDecisionType
    notes: str | None = Field(default=None, max_length=5000)
    expected_version: int | None = None


class ChainStepOut(BaseModel):
    role: str
    advance_to: str | None = None


class ApprovalDecisionOut(BaseModel):
    id: uuid.UUID
    step_index: int
    role: str
    decided_by: uuid.UUID
    decision: Literal["approved", "rejected"]
    notes: str | None = None
    created_at: datetime | None = None


class ApprovalChainOut(BaseModel):
    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    name: str | None = None
    steps: list[ChainStepOut]
    current_step: int
    status: str
    awaiting_role: str | None = None
    submitted_by: uuid.UUID
    created_at: datetime | None = None
    decisions: list[ApprovalDecisionOut] = []
