"""Narrative engine data models."""

from narrative_engine.models.actions import (
    ActionKind,
    AddContactAction,
    CreateEntityAction,
    CreateMode,
    CreateSelection,
    LinkCompanyCoInvestorAction,
    NarrativeAction,
    NarrativeContactPayload,
    NarrativeEntityDraft,
    NarrativeEntityMatch,
    NarrativeEntityPatch,
    NarrativeWebCandidate,
    UpdateEntityAction,
)
from narrative_engine.models.plan import (
    CreatedEntityReference,
    ExecutionRecordRef,
    ExecutionStatus,
    NarrativeExecutionReport,
    NarrativeExecutionResult,
    NarrativePlan,
    PlanPhase,
)
from narrative_engine.models.records import (
    CoInvestor,
    Company,
    CompanyCoInvestorLink,
    CompanyPrimaryCategory,
    CompanyType,
    Contact,
    ContactLink,
    ContactRoleType,
    EntityType,
    HealthSystem,
    LeadSourceType,
    RelationshipType,
    ResearchJob,
    ResearchStatus,
    VenturePartner,
)

__all__ = [
    "ActionKind",
    "AddContactAction",
    "CoInvestor",
    "Company",
    "CompanyCoInvestorLink",
    "CompanyPrimaryCategory",
    "CompanyType",
    "Contact",
    "ContactLink",
    "ContactRoleType",
    "CreateEntityAction",
    "CreateMode",
    "CreateSelection",
    "CreatedEntityReference",
    "EntityType",
    "ExecutionRecordRef",
    "ExecutionStatus",
    "HealthSystem",
    "LeadSourceType",
    "LinkCompanyCoInvestorAction",
    "NarrativeAction",
    "NarrativeContactPayload",
    "NarrativeEntityDraft",
    "NarrativeEntityMatch",
    "NarrativeEntityPatch",
    "NarrativeExecutionReport",
    "NarrativeExecutionResult",
    "NarrativePlan",
    "NarrativeWebCandidate",
    "PlanPhase",
    "RelationshipType",
    "ResearchJob",
    "ResearchStatus",
    "UpdateEntityAction",
    "VenturePartner",
]
