"""
Action Executors — apply one plan action to the entity store.

Behavioral Contract:
- One executor per action kind, registered by kind
- Executors raise ActionExecutionError (or a store error) on failure; the
  scheduler turns the exception into a FAILED result
- Targets resolve from an explicit selected id first, then from the entity
  produced by the linked same-batch create action
- Research is queued after every create; a failed enqueue never fails it
- A successful introduction link may backfill the company lead source;
  a failed backfill never fails the link
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from narrative_engine.errors import ActionExecutionError
from narrative_engine.execution.contacts import link_contact_to_parent
from narrative_engine.execution.lead_source import (
    build_lead_source_update,
    has_introduction_language,
    needs_lead_source_backfill,
    resolve_company_lead_source,
    resolve_introducer_health_system,
)
from narrative_engine.matching.matcher import EntityMatcher
from narrative_engine.matching.normalizer import entity_type_label
from narrative_engine.models.actions import (
    ActionKind,
    AddContactAction,
    CreateEntityAction,
    CreateMode,
    LinkCompanyCoInvestorAction,
    NarrativeAction,
    NarrativeWebCandidate,
    UpdateEntityAction,
)
from narrative_engine.models.plan import (
    CreatedEntityReference,
    ExecutionRecordRef,
    ExecutionStatus,
    NarrativeExecutionResult,
)
from narrative_engine.models.records import (
    CompanyPrimaryCategory,
    CompanyType,
    DEFAULT_ROLE_BY_PARENT,
    EntityType,
    LeadSourceType,
)
from narrative_engine.research.queue import ResearchQueue
from narrative_engine.store.entity_store import EntityStore

logger = logging.getLogger(__name__)

CreatedById = Dict[str, CreatedEntityReference]

_NULLABLE_PATCH_FIELDS = {
    EntityType.HEALTH_SYSTEM: (
        "legal_name", "website", "headquarters_city", "headquarters_state",
        "headquarters_country", "research_notes",
    ),
    EntityType.COMPANY: (
        "legal_name", "website", "headquarters_city", "headquarters_state",
        "headquarters_country", "research_notes", "description", "lead_source_notes",
    ),
    EntityType.CO_INVESTOR: (
        "legal_name", "website", "headquarters_city", "headquarters_state",
        "headquarters_country", "research_notes", "investment_notes",
    ),
}


def _text(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _required_name(value: Optional[str]) -> str:
    name = _text(value)
    if not name:
        raise ActionExecutionError("Name is required.")
    return name


def resolve_linked_id(
    explicit_id: Optional[str], linked_create_action_id: Optional[str], created: CreatedById
) -> Optional[str]:
    if explicit_id:
        return explicit_id
    if not linked_create_action_id:
        return None
    reference = created.get(linked_create_action_id)
    return reference.id if reference else None


def _executed(action: NarrativeAction, message: str, record: ExecutionRecordRef) -> NarrativeExecutionResult:
    return NarrativeExecutionResult(
        action_id=action.id,
        kind=action.kind,
        status=ExecutionStatus.EXECUTED,
        message=message,
        record=record,
    )


class ActionExecutor:
    """
    Dispatches plan actions to per-kind executors against the entity store.
    Holds no state between calls; created-entity bookkeeping is passed in.
    """

    def __init__(
        self,
        store: EntityStore,
        matcher: Optional[EntityMatcher] = None,
        research_queue: Optional[ResearchQueue] = None,
    ):
        self.store = store
        self.matcher = matcher or EntityMatcher(store)
        self.research_queue = research_queue or ResearchQueue(store)
        self._executors: Dict[str, Callable] = {}
        self._register_default_executors()

    def _register_default_executors(self) -> None:
        self._executors[ActionKind.CREATE_ENTITY.value] = self._execute_create
        self._executors[ActionKind.UPDATE_ENTITY.value] = self._execute_update
        self._executors[ActionKind.ADD_CONTACT.value] = self._execute_add_contact
        self._executors[ActionKind.LINK_COMPANY_CO_INVESTOR.value] = self._execute_link

    def register_executor(self, kind: ActionKind, executor: Callable) -> None:
        """Replace the executor for an action kind."""
        self._executors[ActionKind(kind).value] = executor

    def execute(self, action: NarrativeAction, created: CreatedById) -> NarrativeExecutionResult:
        """Run one action. Raises on failure."""
        executor = self._executors.get(ActionKind(action.kind).value)
        if executor is None:
            raise ActionExecutionError(f"No executor registered for action kind: {action.kind}")
        return executor(action, created)

    # --- CREATE_ENTITY ---

    def _execute_create(self, action: CreateEntityAction, created: CreatedById) -> NarrativeExecutionResult:
        reference = self.create_entity(action)
        created[action.id] = reference
        label = entity_type_label(reference.entity_type)
        verb = "Created" if reference.created else "Using existing"
        return _executed(
            action,
            f"{verb} {label} {reference.name}.",
            ExecutionRecordRef(entity_type=reference.entity_type, id=reference.id, name=reference.name),
        )

    def create_entity(self, action: CreateEntityAction) -> CreatedEntityReference:
        mode = action.selection.mode
        if mode == CreateMode.USE_EXISTING:
            return self._use_existing(action)
        if mode == CreateMode.CREATE_FROM_WEB:
            fields = self._fields_from_web_candidate(action)
        elif mode == CreateMode.CREATE_MANUAL:
            fields = self._fields_from_draft(action)
        else:
            raise ActionExecutionError(f"Unsupported create mode: {mode}")

        record = self.store.create(action.entity_type, fields)
        self.research_queue.enqueue(action.entity_type, record.id)
        return CreatedEntityReference(
            entity_type=action.entity_type, id=record.id, name=record.name, created=True
        )

    def _use_existing(self, action: CreateEntityAction) -> CreatedEntityReference:
        existing_id = action.selection.existing_id or (
            action.existing_matches[0].id if action.existing_matches else None
        )
        if not existing_id:
            raise ActionExecutionError(
                "Create action is set to use existing record, but no existing record was selected."
            )
        record = self.store.find_unique(action.entity_type, existing_id)
        if record is None:
            raise ActionExecutionError("Selected existing record no longer exists.")
        return CreatedEntityReference(
            entity_type=action.entity_type, id=record.id, name=record.name, created=False
        )

    def _selected_web_candidate(self, action: CreateEntityAction) -> NarrativeWebCandidate:
        candidates = action.web_candidates
        if not candidates:
            raise ActionExecutionError(
                "No web candidates available for this create action. "
                "Choose manual create or select an existing record."
            )
        index = action.selection.web_candidate_index
        if index is None:
            if len(candidates) != 1:
                raise ActionExecutionError(
                    "Multiple web candidates found. Select one candidate before execution."
                )
            index = 0
        if index >= len(candidates):
            raise ActionExecutionError("Selected web candidate is invalid. Please choose a valid candidate.")
        return candidates[index]

    def _type_fields(self, action: CreateEntityAction) -> dict:
        draft = action.draft
        if action.entity_type == EntityType.HEALTH_SYSTEM:
            return {
                "is_limited_partner": bool(draft.is_limited_partner),
                "is_alliance_member": bool(draft.is_alliance_member),
                "limited_partner_investment_usd": (
                    draft.limited_partner_investment_usd if draft.is_limited_partner else None
                ),
            }
        if action.entity_type == EntityType.COMPANY:
            lead_source = resolve_company_lead_source(draft, self.store, self.matcher)
            return {
                "company_type": draft.company_type or CompanyType.STARTUP,
                "primary_category": draft.primary_category or CompanyPrimaryCategory.OTHER,
                "primary_category_other": _text(draft.primary_category_other),
                "description": _text(draft.description),
                **lead_source.model_dump(),
            }
        return {
            "is_seed_investor": bool(draft.is_seed_investor),
            "is_series_a_investor": bool(draft.is_series_a_investor),
            "investment_notes": _text(draft.investment_notes),
        }

    def _fields_from_web_candidate(self, action: CreateEntityAction) -> dict:
        candidate = self._selected_web_candidate(action)
        return {
            "name": _required_name(candidate.name),
            "website": _text(candidate.website),
            "headquarters_city": _text(candidate.headquarters_city),
            "headquarters_state": _text(candidate.headquarters_state),
            "headquarters_country": _text(candidate.headquarters_country),
            "research_notes": _text(candidate.summary) or _text(action.draft.research_notes),
            **self._type_fields(action),
        }

    def _fields_from_draft(self, action: CreateEntityAction) -> dict:
        draft = action.draft
        return {
            "name": _required_name(draft.name),
            "legal_name": _text(draft.legal_name),
            "website": _text(draft.website),
            "headquarters_city": _text(draft.headquarters_city),
            "headquarters_state": _text(draft.headquarters_state),
            "headquarters_country": _text(draft.headquarters_country),
            "research_notes": _text(draft.research_notes),
            **self._type_fields(action),
        }

    # --- UPDATE_ENTITY ---

    def _execute_update(self, action: UpdateEntityAction, created: CreatedById) -> NarrativeExecutionResult:
        target_id = resolve_linked_id(action.selected_target_id, action.linked_create_action_id, created)
        if not target_id:
            raise ActionExecutionError("No target record selected for update.")

        fields = self._patch_fields(action)
        record = self.store.update(action.entity_type, target_id, fields)
        return _executed(
            action,
            f"Updated {entity_type_label(action.entity_type)} {record.name}.",
            ExecutionRecordRef(entity_type=action.entity_type, id=record.id, name=record.name),
        )

    def _patch_fields(self, action: UpdateEntityAction) -> dict:
        patch = action.patch
        provided = patch.model_dump(exclude_unset=True)
        fields: dict = {}

        if "name" in provided:
            name = _text(provided["name"])
            if not name:
                raise ActionExecutionError("Name patch cannot be empty.")
            fields["name"] = name

        for field in _NULLABLE_PATCH_FIELDS[action.entity_type]:
            if field in provided:
                fields[field] = _text(provided[field])

        if action.entity_type == EntityType.COMPANY:
            fields.update(build_lead_source_update(patch, self.store, self.matcher))

        fields["research_updated_at"] = datetime.now(timezone.utc)
        return fields

    # --- ADD_CONTACT ---

    def _execute_add_contact(self, action: AddContactAction, created: CreatedById) -> NarrativeExecutionResult:
        parent_id = resolve_linked_id(action.selected_parent_id, action.linked_create_action_id, created)
        if not parent_id:
            raise ActionExecutionError("No parent record selected for contact action.")

        contact_name = _required_name(action.contact.name)
        link_contact_to_parent(
            self.store,
            action.contact,
            action.parent_type,
            parent_id,
            action.role_type or DEFAULT_ROLE_BY_PARENT[action.parent_type],
        )
        return _executed(
            action,
            f"Linked contact {contact_name} to {entity_type_label(action.parent_type)}.",
            ExecutionRecordRef(entity_type=action.parent_type, id=parent_id, name=action.parent_name),
        )

    # --- LINK_COMPANY_CO_INVESTOR ---

    def _execute_link(self, action: LinkCompanyCoInvestorAction, created: CreatedById) -> NarrativeExecutionResult:
        company_id = resolve_linked_id(action.selected_company_id, action.company_create_action_id, created)
        if not company_id:
            raise ActionExecutionError("No company selected for co-investor relationship.")
        co_investor_id = resolve_linked_id(
            action.selected_co_investor_id, action.co_investor_create_action_id, created
        )
        if not co_investor_id:
            raise ActionExecutionError("No co-investor selected for relationship.")

        self.store.upsert_company_co_investor_link(
            company_id,
            co_investor_id,
            relationship_type=action.relationship_type,
            notes=_text(action.notes),
            investment_amount_usd=action.investment_amount_usd,
        )

        if has_introduction_language(action.notes) or has_introduction_language(action.rationale):
            try:
                self.backfill_lead_source(action, company_id, co_investor_id)
            except Exception:
                logger.warning(
                    "Lead-source backfill failed for company %s", company_id, exc_info=True
                )

        return _executed(
            action,
            "Linked company and co-investor relationship.",
            ExecutionRecordRef(entity_type=EntityType.COMPANY, id=company_id, name=action.company_name),
        )

    def backfill_lead_source(
        self, action: LinkCompanyCoInvestorAction, company_id: str, co_investor_id: str
    ) -> None:
        """Set the introducer as lead source on a company that has none yet."""
        company = self.store.find_unique(EntityType.COMPANY, company_id)
        if company is None or not needs_lead_source_backfill(company):
            return

        notes = _text(action.notes) or f"Introduced by {action.co_investor_name} (narrative intake)."
        health_system = resolve_introducer_health_system(
            self.store, self.matcher, co_investor_id, action.co_investor_name
        )
        if health_system is not None:
            patch = {
                "lead_source_type": LeadSourceType.HEALTH_SYSTEM,
                "lead_source_health_system_id": health_system.id,
                "lead_source_other": None,
                "lead_source_notes": notes,
            }
        else:
            patch = {
                "lead_source_type": LeadSourceType.OTHER,
                "lead_source_health_system_id": None,
                "lead_source_other": _text(action.co_investor_name),
                "lead_source_notes": notes,
            }
        self.store.update(EntityType.COMPANY, company_id, patch)
        logger.info("Backfilled lead source for company %s from introduction", company_id)
