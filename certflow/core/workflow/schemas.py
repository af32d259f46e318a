import uuid
from typing import Any

from pydantic import BaseModel

from certflow.common.enums import EntityType, UserRole


class TransitionRule(BaseModel):
    entity_type: EntityType
    source: str
    target: str
    roles: list[UserRole]
    action: str
    required_payload: list[str] = []
    # only decided through an open approval chain when one exists
    chain_controlled: bool = False
    # for exits from a rejected state: the review state the rejection came from
    only_if_rejected_from: str | None = None

    model_config = {"frozen": True}

    def allows(self, role: str) -> bool:
        return role in {r.value for r in self.roles}


class TransitionRequest(BaseModel):
    target_state: str
    payload: dict[str, Any] = {}
    expected_version: int | None = None


class TransitionResult(BaseModel):
    entity_type: EntityType
    entity_id: uuid.UUID
    from_state: str
    to_state: str
    action: str
    version: int
    chain_id: uuid.UUID | None = None


class PhaseInfo(BaseModel):
    number: int
    name: str
    progress: int
