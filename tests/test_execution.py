"""Tests for plan execution: executors, dependency ordering and failure semantics."""

from datetime import timedelta

import pytest

from narrative_engine.errors import ActionExecutionError
from narrative_engine.execution.executors import ActionExecutor
from narrative_engine.execution.lead_source import NARRATIVE_INTAKE
from narrative_engine.execution.scheduler import (
    SKIPPED_MESSAGE,
    ExecutionScheduler,
    get_dependency_action_ids,
    order_actions_for_execution,
)
from narrative_engine.models.actions import (
    ActionKind,
    AddContactAction,
    CreateEntityAction,
    CreateMode,
    CreateSelection,
    LinkCompanyCoInvestorAction,
    NarrativeContactPayload,
    NarrativeEntityDraft,
    NarrativeEntityPatch,
    NarrativeWebCandidate,
    UpdateEntityAction,
)
from narrative_engine.models.plan import ExecutionStatus, NarrativePlan
from narrative_engine.models.records import (
    ContactRoleType,
    EntityType,
    LeadSourceType,
    RelationshipType,
)
from narrative_engine.store.entity_store import EntityStore


@pytest.fixture
def store():
    s = EntityStore(":memory:")
    yield s
    s.close()


def _make_create(action_id, name, entity_type=EntityType.COMPANY, mode=CreateMode.CREATE_MANUAL, **fields):
    draft_fields = fields.pop("draft_fields", {})
    return CreateEntityAction(
        id=action_id,
        entity_type=entity_type,
        draft=NarrativeEntityDraft(name=name, **draft_fields),
        selection=CreateSelection(mode=mode),
        **fields,
    )


def _make_link(action_id="link-1", **fields):
    fields.setdefault("company_name", "CarePilot")
    fields.setdefault("co_investor_name", "Summit Ventures")
    return LinkCompanyCoInvestorAction(id=action_id, **fields)


def _run(store, actions):
    scheduler = ExecutionScheduler(ActionExecutor(store))
    return scheduler.execute_plan(NarrativePlan(narrative="test", actions=actions))


def _status(report, action_id):
    return next(r for r in report.results if r.action_id == action_id).status


# ============================================================
# Ordering
# ============================================================

class TestOrdering:
    def test_dependencies_from_linked_creates(self):
        link = _make_link(company_create_action_id="c1", co_investor_create_action_id="c2")
        assert get_dependency_action_ids(link) == ["c1", "c2"]

        resolved = _make_link(selected_company_id="co_1", company_create_action_id="c1")
        assert get_dependency_action_ids(resolved) == []

    def test_creates_run_before_dependents(self):
        update = UpdateEntityAction(
            id="u1", entity_type=EntityType.COMPANY, target_name="CarePilot", linked_create_action_id="c1"
        )
        other = _make_create("c0", "Other Co")
        create = _make_create("c1", "CarePilot")
        ordered = order_actions_for_execution([update, other, create])
        assert [a.id for a in ordered] == ["c0", "c1", "u1"]

    def test_excluded_actions_are_not_ordered(self):
        ordered = order_actions_for_execution([_make_create("c1", "A", include=False), _make_create("c2", "B")])
        assert [a.id for a in ordered] == ["c2"]

    def test_cycle_leftovers_keep_plan_order(self):
        a = UpdateEntityAction(id="a", entity_type=EntityType.COMPANY, target_name="A", linked_create_action_id="b")
        b = UpdateEntityAction(id="b", entity_type=EntityType.COMPANY, target_name="B", linked_create_action_id="a")
        assert [x.id for x in order_actions_for_execution([a, b])] == ["a", "b"]


# ============================================================
# Scheduler
# ============================================================

class TestExecutionScheduler:
    def test_empty_plan(self, store):
        report = _run(store, [])
        assert report.summary == "Executed 0, failed 0, skipped 0."
        assert report.results == []

    def test_chain_executes_in_dependency_order(self, store):
        actions = [
            _make_link(company_create_action_id="c-company", co_investor_create_action_id="c-fund",
                       notes="Led the seed.", investment_amount_usd=500_000),
            _make_create("c-company", "CarePilot"),
            _make_create("c-fund", "Summit Ventures", EntityType.CO_INVESTOR),
        ]
        report = _run(store, actions)

        assert report.executed == 3
        assert [r.action_id for r in report.results] == ["link-1", "c-company", "c-fund"]
        assert {c.name for c in report.created_entities} == {"CarePilot", "Summit Ventures"}

        company = store.list_entities(EntityType.COMPANY)[0]
        links = store.list_company_co_investor_links(company.id)
        assert len(links) == 1
        assert links[0].investment_amount_usd == 500_000
        assert len(store.list_research_jobs()) == 2

    def test_failed_dependency_blocks_dependent(self, store):
        actions = [
            _make_create("c1", "CarePilot", mode=CreateMode.CREATE_FROM_WEB),
            UpdateEntityAction(
                id="u1",
                entity_type=EntityType.COMPANY,
                target_name="CarePilot",
                linked_create_action_id="c1",
                patch=NarrativeEntityPatch(website="https://carepilot.test"),
            ),
            _make_create("c2", "Independent Co"),
        ]
        report = _run(store, actions)

        assert _status(report, "c1") == ExecutionStatus.FAILED
        assert _status(report, "u1") == ExecutionStatus.FAILED
        assert "dependency c1" in report.results[1].message
        assert _status(report, "c2") == ExecutionStatus.EXECUTED
        assert report.summary == "Executed 1, failed 2, skipped 0."

    def test_excluded_dependency_blocks_dependent(self, store):
        actions = [
            _make_create("c1", "CarePilot", include=False),
            AddContactAction(
                id="a1",
                parent_type=EntityType.COMPANY,
                parent_name="CarePilot",
                linked_create_action_id="c1",
                contact=NarrativeContactPayload(name="Pat Lee"),
            ),
        ]
        report = _run(store, actions)
        assert report.results[0].status == ExecutionStatus.SKIPPED
        assert report.results[0].message == SKIPPED_MESSAGE
        assert report.results[1].status == ExecutionStatus.FAILED
        assert report.results[1].message == (
            "Cannot link contact Pat Lee because dependency c1 did not execute successfully."
        )

    def test_executor_error_is_captured(self, store):
        executor = ActionExecutor(store)

        def explode(action, created):
            raise RuntimeError("store offline")

        executor.register_executor(ActionKind.CREATE_ENTITY, explode)
        report = ExecutionScheduler(executor).execute_plan(
            NarrativePlan(narrative="x", actions=[_make_create("c1", "A"), _make_create("c2", "B")])
        )
        assert report.failed == 2
        assert report.results[0].message == "store offline"


# ============================================================
# Executors
# ============================================================

class TestCreateExecutor:
    def test_use_existing(self, store):
        existing = store.create(EntityType.HEALTH_SYSTEM, {"name": "Mercy General"})
        action = CreateEntityAction(
            id="c1",
            entity_type=EntityType.HEALTH_SYSTEM,
            draft=NarrativeEntityDraft(name="Mercy General"),
            selection=CreateSelection(mode=CreateMode.USE_EXISTING, existing_id=existing.id),
        )
        report = _run(store, [action])
        assert report.results[0].message == "Using existing health system Mercy General."
        assert report.created_entities[0].created is False
        assert store.list_research_jobs() == []

    def test_use_existing_without_selection_fails(self, store):
        report = _run(store, [_make_create("c1", "Mercy", EntityType.HEALTH_SYSTEM, mode=CreateMode.USE_EXISTING)])
        assert report.results[0].status == ExecutionStatus.FAILED
        assert "no existing record was selected" in report.results[0].message

    def test_create_from_single_web_candidate(self, store):
        action = CreateEntityAction(
            id="c1",
            entity_type=EntityType.COMPANY,
            draft=NarrativeEntityDraft(name="Vitalize", research_notes="From the narrative."),
            web_candidates=[NarrativeWebCandidate(name="Vitalize Care", website="https://vitalize.test")],
            selection=CreateSelection(mode=CreateMode.CREATE_FROM_WEB),
        )
        report = _run(store, [action])
        assert report.results[0].message == "Created company Vitalize Care."
        company = store.list_entities(EntityType.COMPANY)[0]
        assert company.website == "https://vitalize.test"
        assert company.research_notes == "From the narrative."
        assert company.lead_source_other == NARRATIVE_INTAKE

    def test_multiple_web_candidates_need_a_selection(self, store):
        action = CreateEntityAction(
            id="c1",
            entity_type=EntityType.COMPANY,
            draft=NarrativeEntityDraft(name="Vitalize"),
            web_candidates=[NarrativeWebCandidate(name="A"), NarrativeWebCandidate(name="B")],
        )
        report = _run(store, [action])
        assert report.results[0].status == ExecutionStatus.FAILED
        assert "Select one candidate" in report.results[0].message

    def test_company_lead_source_resolves_hint(self, store):
        acme = store.create(EntityType.HEALTH_SYSTEM, {"name": "Acme Health"})
        action = _make_create("c1", "Vitalize Care", draft_fields={
            "lead_source_type": LeadSourceType.HEALTH_SYSTEM,
            "lead_source_health_system_name": "Acme Health",
        })
        _run(store, [action])
        company = store.list_entities(EntityType.COMPANY)[0]
        assert company.lead_source_type == LeadSourceType.HEALTH_SYSTEM
        assert company.lead_source_health_system_id == acme.id

    def test_unresolved_lead_source_falls_back_to_other(self, store):
        action = _make_create("c1", "Vitalize Care", draft_fields={
            "lead_source_type": LeadSourceType.HEALTH_SYSTEM,
            "lead_source_health_system_name": "Unknown Health",
            "lead_source_health_system_id": "hs_gone",
        })
        report = _run(store, [action])
        assert report.executed == 1
        company = store.list_entities(EntityType.COMPANY)[0]
        assert company.lead_source_type == LeadSourceType.OTHER
        assert company.lead_source_health_system_id is None
        assert company.lead_source_other == "Unknown Health"


class TestUpdateExecutor:
    def test_only_provided_fields_change(self, store):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot", "website": "https://old.test",
                                                    "headquarters_city": "Austin"})
        action = UpdateEntityAction(
            id="u1",
            entity_type=EntityType.COMPANY,
            target_name="CarePilot",
            selected_target_id=company.id,
            patch=NarrativeEntityPatch(website="https://new.test"),
        )
        report = _run(store, [action])
        assert report.results[0].message == "Updated company CarePilot."
        updated = store.find_unique(EntityType.COMPANY, company.id)
        assert updated.website == "https://new.test"
        assert updated.headquarters_city == "Austin"

    def test_update_stamps_research_time_in_utc(self, store):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot"})
        action = UpdateEntityAction(
            id="u1",
            entity_type=EntityType.COMPANY,
            target_name="CarePilot",
            selected_target_id=company.id,
            patch=NarrativeEntityPatch(website="https://new.test"),
        )
        _run(store, [action])
        stamped = store.find_unique(EntityType.COMPANY, company.id).research_updated_at
        assert stamped.utcoffset() == timedelta(0)
        assert stamped >= company.research_updated_at

    def test_plan_round_trip_keeps_patch_scope(self, store):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot", "headquarters_city": "Austin"})
        action = UpdateEntityAction(
            id="u1",
            entity_type=EntityType.COMPANY,
            target_name="CarePilot",
            selected_target_id=company.id,
            patch=NarrativeEntityPatch(website="https://new.test"),
        )
        plan = NarrativePlan(narrative="x", actions=[action])
        restored = NarrativePlan.model_validate(plan.model_dump(mode="json", by_alias=True))

        ExecutionScheduler(ActionExecutor(store)).execute_plan(restored)
        assert store.find_unique(EntityType.COMPANY, company.id).headquarters_city == "Austin"

    def test_explicit_null_clears_field(self, store):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot", "website": "https://old.test"})
        action = UpdateEntityAction(
            id="u1",
            entity_type=EntityType.COMPANY,
            target_name="CarePilot",
            selected_target_id=company.id,
            patch=NarrativeEntityPatch(website=None),
        )
        _run(store, [action])
        assert store.find_unique(EntityType.COMPANY, company.id).website is None

    def test_blank_name_patch_fails(self, store):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot"})
        action = UpdateEntityAction(
            id="u1",
            entity_type=EntityType.COMPANY,
            target_name="CarePilot",
            selected_target_id=company.id,
            patch=NarrativeEntityPatch(name="  "),
        )
        report = _run(store, [action])
        assert report.results[0].status == ExecutionStatus.FAILED
        assert store.find_unique(EntityType.COMPANY, company.id).name == "CarePilot"

    def test_missing_target_fails(self, store):
        action = UpdateEntityAction(id="u1", entity_type=EntityType.COMPANY, target_name="Ghost Co")
        report = _run(store, [action])
        assert report.results[0].message == "No target record selected for update."

    def test_lead_source_other_patch(self, store):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot"})
        action = UpdateEntityAction(
            id="u1",
            entity_type=EntityType.COMPANY,
            target_name="CarePilot",
            selected_target_id=company.id,
            patch=NarrativeEntityPatch(lead_source_other="Conference"),
        )
        _run(store, [action])
        updated = store.find_unique(EntityType.COMPANY, company.id)
        assert updated.lead_source_type == LeadSourceType.OTHER
        assert updated.lead_source_other == "Conference"


class TestContactExecutor:
    def test_default_role_by_parent(self, store):
        fund = store.create(EntityType.CO_INVESTOR, {"name": "Summit Ventures"})
        action = AddContactAction(
            id="a1",
            parent_type=EntityType.CO_INVESTOR,
            parent_name="Summit Ventures",
            selected_parent_id=fund.id,
            contact=NarrativeContactPayload(name="Pat Lee"),
        )
        report = _run(store, [action])
        assert report.results[0].message == "Linked contact Pat Lee to co-investor."
        links = store.list_contact_links(EntityType.CO_INVESTOR, fund.id)
        assert links[0].role_type == ContactRoleType.INVESTOR_PARTNER


class TestLinkExecutor:
    def _seed(self, store, company_fields=None):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot", **(company_fields or {})})
        fund = store.create(EntityType.CO_INVESTOR, {"name": "Mercy Ventures"})
        return company, fund

    def test_intro_backfills_lead_source_from_venture_partner(self, store):
        company, fund = self._seed(store)
        mercy = store.create(EntityType.HEALTH_SYSTEM, {"name": "Mercy General"})
        store.add_venture_partner(mercy.id, fund.id)

        action = _make_link(
            co_investor_name="Mercy Ventures",
            selected_company_id=company.id,
            selected_co_investor_id=fund.id,
            notes="Mercy Ventures introduced us to CarePilot.",
        )
        report = _run(store, [action])
        assert report.results[0].message == "Linked company and co-investor relationship."

        updated = store.find_unique(EntityType.COMPANY, company.id)
        assert updated.lead_source_type == LeadSourceType.HEALTH_SYSTEM
        assert updated.lead_source_health_system_id == mercy.id
        assert updated.lead_source_notes == "Mercy Ventures introduced us to CarePilot."

    def test_intro_without_health_system_records_introducer(self, store):
        company, fund = self._seed(store)
        action = _make_link(
            co_investor_name="Mercy Ventures",
            selected_company_id=company.id,
            selected_co_investor_id=fund.id,
            rationale="They introduced us to the founders.",
        )
        _run(store, [action])
        updated = store.find_unique(EntityType.COMPANY, company.id)
        assert updated.lead_source_type == LeadSourceType.OTHER
        assert updated.lead_source_other == "Mercy Ventures"
        assert updated.lead_source_notes == "Introduced by Mercy Ventures (narrative intake)."

    def test_explicit_lead_source_is_not_overwritten(self, store):
        company, fund = self._seed(store, {"lead_source_other": "Conference"})
        action = _make_link(
            co_investor_name="Mercy Ventures",
            selected_company_id=company.id,
            selected_co_investor_id=fund.id,
            notes="Mercy Ventures introduced us to CarePilot.",
        )
        _run(store, [action])
        assert store.find_unique(EntityType.COMPANY, company.id).lead_source_other == "Conference"

    def test_relink_updates_existing_relationship(self, store):
        company, fund = self._seed(store)
        base = dict(selected_company_id=company.id, selected_co_investor_id=fund.id)
        _run(store, [_make_link(notes="First.", **base)])
        _run(store, [_make_link(notes="Second.", relationship_type=RelationshipType.PARTNER, **base)])

        links = store.list_company_co_investor_links(company.id)
        assert len(links) == 1
        assert links[0].notes == "Second."

    def test_missing_co_investor_fails(self, store):
        company, _ = self._seed(store)
        report = _run(store, [_make_link(selected_company_id=company.id)])
        assert report.results[0].message == "No co-investor selected for relationship."

    def test_unknown_kind_raises(self, store):
        executor = ActionExecutor(store)
        executor._executors.pop(ActionKind.ADD_CONTACT.value)
        action = AddContactAction(
            id="a1", parent_type=EntityType.COMPANY, parent_name="X", contact=NarrativeContactPayload(name="Y")
        )
        with pytest.raises(ActionExecutionError):
            executor.execute(action, {})
