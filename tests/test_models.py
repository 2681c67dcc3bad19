"""Tests for the narrative engine data models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from narrative_engine.models import (
    ActionKind,
    AddContactAction,
    CreateEntityAction,
    CreateMode,
    EntityType,
    LinkCompanyCoInvestorAction,
    NarrativeAction,
    NarrativeContactPayload,
    NarrativeEntityDraft,
    NarrativeEntityPatch,
    NarrativeExecutionReport,
    NarrativePlan,
    PlanPhase,
    UpdateEntityAction,
)

ACTION_ADAPTER = TypeAdapter(NarrativeAction)


def _make_create(name: str = "Vitalize Care") -> CreateEntityAction:
    return CreateEntityAction(
        id="create_entity-1-vitalize-care",
        entity_type=EntityType.COMPANY,
        draft=NarrativeEntityDraft(name=name),
    )


class TestNarrativeActions:
    def test_discriminated_union_dispatches_on_kind(self):
        raw = {
            "kind": "LINK_COMPANY_CO_INVESTOR",
            "id": "link-1",
            "companyName": "CarePilot",
            "coInvestorName": "Summit Ventures",
        }
        action = ACTION_ADAPTER.validate_python(raw)
        assert isinstance(action, LinkCompanyCoInvestorAction)
        assert action.relationship_type.value == "INVESTOR"

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            ACTION_ADAPTER.validate_python({"kind": "DELETE_ENTITY", "id": "x"})

    def test_confidence_must_be_between_zero_and_one(self):
        with pytest.raises(ValidationError):
            CreateEntityAction(
                id="c1",
                confidence=1.5,
                entity_type=EntityType.COMPANY,
                draft=NarrativeEntityDraft(name="Acme"),
            )

    def test_draft_name_is_required(self):
        with pytest.raises(ValidationError):
            NarrativeEntityDraft(name="")

    def test_defaults(self):
        action = _make_create()
        assert action.include is True
        assert action.issues == []
        assert action.selection.mode == CreateMode.CREATE_FROM_WEB
        assert action.kind == ActionKind.CREATE_ENTITY

    def test_contact_role_defaults_to_none_until_hydrated(self):
        action = AddContactAction(
            id="a1",
            parent_type=EntityType.HEALTH_SYSTEM,
            parent_name="Mercy General",
            contact=NarrativeContactPayload(name="Jane Doe"),
        )
        assert action.role_type is None

    def test_patch_tracks_only_provided_fields(self):
        patch = NarrativeEntityPatch(website="https://acme.test")
        assert patch.model_dump(exclude_unset=True) == {"website": "https://acme.test"}


class TestNarrativePlan:
    def test_json_uses_camel_case_aliases(self):
        plan = NarrativePlan(narrative="Add Vitalize Care", actions=[_make_create()])
        dumped = plan.model_dump(mode="json", by_alias=True)
        action = dumped["actions"][0]
        assert action["entityType"] == "COMPANY"
        assert action["existingMatches"] == []
        assert dumped["phase"] == "PLAN"
        assert "modelDigest" in dumped

    def test_round_trips_through_json(self):
        plan = NarrativePlan(
            narrative="Update Mercy and add a contact",
            phase=PlanPhase.CLARIFICATION,
            warnings=["Which record should be updated?"],
            actions=[
                _make_create(),
                UpdateEntityAction(
                    id="u1",
                    entity_type=EntityType.HEALTH_SYSTEM,
                    target_name="Mercy General",
                    patch=NarrativeEntityPatch(website="https://mercy.test"),
                ),
            ],
        )
        restored = NarrativePlan.model_validate_json(plan.model_dump_json(by_alias=True))
        assert restored == plan

    def test_empty_narrative_is_allowed(self):
        assert NarrativePlan(narrative="").actions == []

    def test_duplicate_action_ids_are_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate action id"):
            NarrativePlan(narrative="Add Vitalize Care", actions=[_make_create(), _make_create("Other Co")])


class TestExecutionReport:
    def test_report_shape(self):
        report = NarrativeExecutionReport(
            summary="Executed 0, failed 0, skipped 0.",
            executed=0,
            failed=0,
            skipped=0,
            results=[],
            created_entities=[],
        )
        dumped = report.model_dump(by_alias=True)
        assert set(dumped) == {"summary", "executed", "failed", "skipped", "results", "createdEntities"}
