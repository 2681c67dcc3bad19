"""Narrative Plan and Execution Report — what the engine hands back to callers."""

from enum import Enum
from typing import List, Optional

from pydantic import Field, model_validator

from narrative_engine.models.actions import ActionKind, NarrativeAction
from narrative_engine.models.records import CamelModel, EntityType


class PlanPhase(str, Enum):
    CLARIFICATION = "CLARIFICATION"   # A human answer is needed before execution
    PLAN = "PLAN"                     # Ready to review and execute


class ExecutionStatus(str, Enum):
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class NarrativePlan(CamelModel):
    """
    One narrative turn, resolved into reviewable actions.

    Built fresh per turn. A human edit produces a new plan; plans are
    never mutated after being returned.
    """

    narrative: str
    phase: PlanPhase = PlanPhase.PLAN
    summary: str = ""
    model_digest: Optional[str] = None
    warnings: List[str] = []
    actions: List[NarrativeAction] = []

    @model_validator(mode="after")
    def _check_unique_action_ids(self):
        seen = set()
        for action in self.actions:
            if action.id in seen:
                raise ValueError(f"Duplicate action id in plan: {action.id}")
            seen.add(action.id)
        return self


class ExecutionRecordRef(CamelModel):
    entity_type: Optional[EntityType] = None
    id: Optional[str] = None
    name: Optional[str] = None


class NarrativeExecutionResult(CamelModel):
    """Outcome of one action. Produced once, never mutated."""

    action_id: str = Field(min_length=1)
    kind: ActionKind
    status: ExecutionStatus
    message: str
    record: Optional[ExecutionRecordRef] = None


class CreatedEntityReference(CamelModel):
    """An entity resolved or created during the current execution pass."""

    entity_type: EntityType
    id: str
    name: str
    created: bool


class NarrativeExecutionReport(CamelModel):
    summary: str
    executed: int
    failed: int
    skipped: int
    results: List[NarrativeExecutionResult]
    created_entities: List[CreatedEntityReference]
