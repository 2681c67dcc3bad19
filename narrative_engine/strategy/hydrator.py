"""
Action Hydrator — enriches extracted actions with store matches, web
candidates and a concrete selection strategy.

Behavioral Contract:
- CREATE_ENTITY: a top existing match at or above the auto-match threshold
  always forces USE_EXISTING; otherwise one web candidate is auto-selected,
  several require a human choice, none falls back to CREATE_MANUAL
- Company lead-source hints resolve to an id only at or above the threshold
- UPDATE/ADD_CONTACT/LINK targets resolve from a high-confidence match or a
  same-batch CREATE_ENTITY with the identical normalized name
- Unresolved targets become issues, never errors
- Hydrating one action never depends on another's hydration result
"""

import asyncio
from typing import Dict, List, Optional

from narrative_engine.matching.matcher import (
    AUTO_MATCH_CONFIDENCE_THRESHOLD,
    EntityMatcher,
    is_high_confidence,
)
from narrative_engine.matching.normalizer import clean_name_fragment, normalize_entity_name_for_lookup
from narrative_engine.models.actions import (
    ActionKind,
    AddContactAction,
    CreateEntityAction,
    CreateMode,
    CreateSelection,
    LinkCompanyCoInvestorAction,
    NarrativeAction,
    UpdateEntityAction,
)
from narrative_engine.models.records import DEFAULT_ROLE_BY_PARENT, EntityType, LeadSourceType
from narrative_engine.research.web_candidates import WebCandidateFetcher

_THRESHOLD_PERCENT = round(AUTO_MATCH_CONFIDENCE_THRESHOLD * 100)


CreateLookup = Dict[str, str]


def _percent(confidence: float) -> int:
    return round(confidence * 100)


def _lookup_key(entity_type: EntityType, name: str) -> str:
    return f"{entity_type.value}:{normalize_entity_name_for_lookup(name, entity_type)}"


def build_create_lookup(actions: List[NarrativeAction]) -> CreateLookup:
    """Map 'TYPE:normalized name' to the id of the CREATE_ENTITY action producing it."""
    lookup: CreateLookup = {}
    for action in actions:
        if action.kind == ActionKind.CREATE_ENTITY:
            lookup[_lookup_key(action.entity_type, action.draft.name)] = action.id
    return lookup


def lookup_create_action(
    lookup: CreateLookup, entity_type: EntityType, name: str
) -> Optional[str]:
    return lookup.get(_lookup_key(entity_type, name))


def _dedupe_issues(issues: List[str]) -> List[str]:
    return list(dict.fromkeys(issues))


class ActionHydrator:
    """Resolves each action against the store and web search."""

    def __init__(self, matcher: EntityMatcher, web_fetcher: WebCandidateFetcher):
        self.matcher = matcher
        self.web_fetcher = web_fetcher

    async def hydrate_all(self, actions: List[NarrativeAction]) -> List[NarrativeAction]:
        """Hydrate every action concurrently; output order matches input order."""
        lookup = build_create_lookup(actions)
        return list(await asyncio.gather(*(self.hydrate(a, lookup) for a in actions)))

    async def hydrate(self, action: NarrativeAction, lookup: CreateLookup) -> NarrativeAction:
        kind = action.kind
        if kind == ActionKind.CREATE_ENTITY:
            return await self._hydrate_create(action)
        if kind == ActionKind.UPDATE_ENTITY:
            return self._hydrate_update(action, lookup)
        if kind == ActionKind.ADD_CONTACT:
            return self._hydrate_contact(action, lookup)
        if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
            return self._hydrate_link(action, lookup)
        raise ValueError(f"Unhandled action kind: {kind}")

    async def _hydrate_create(self, action: CreateEntityAction) -> CreateEntityAction:
        existing_matches = self.matcher.fetch_entity_matches(action.entity_type, action.draft.name)
        web_candidates = await self.web_fetcher.fetch_web_candidates(action.entity_type, action.draft.name)

        issues = list(action.issues)
        draft = action.draft
        top = existing_matches[0] if existing_matches else None

        if is_high_confidence(top):
            selection = CreateSelection(mode=CreateMode.USE_EXISTING, existing_id=top.id)
            if len(existing_matches) > 1:
                issues.append(
                    f"Existing CRM matches found; auto-selecting {top.name} because "
                    f"confidence is at least {_THRESHOLD_PERCENT}%."
                )
            else:
                issues.append(
                    f"High-confidence existing match found ({_percent(top.confidence)}%). "
                    "Defaulting to existing record."
                )
        elif len(web_candidates) == 1:
            selection = CreateSelection(mode=CreateMode.CREATE_FROM_WEB, web_candidate_index=0)
        elif len(web_candidates) > 1:
            selection = CreateSelection(mode=CreateMode.CREATE_FROM_WEB)
            issues.append("Multiple web matches found. Select the correct entity before execution.")
        else:
            selection = CreateSelection(mode=CreateMode.CREATE_MANUAL)
            issues.append("No web match found. Manual create is selected.")

        if top is not None and not is_high_confidence(top):
            issues.append(
                f"Potential existing match found ({_percent(top.confidence)}%), below "
                f"{_THRESHOLD_PERCENT}% auto-select threshold. Confirm whether to use existing or create new."
            )

        if action.entity_type == EntityType.COMPANY and draft.lead_source_type == LeadSourceType.HEALTH_SYSTEM:
            lead_source_name = clean_name_fragment(
                draft.lead_source_health_system_name or draft.lead_source_other or ""
            )
            if lead_source_name:
                draft = self._resolve_lead_source_hint(draft, lead_source_name, issues)

        return action.model_copy(update={
            "draft": draft,
            "existing_matches": existing_matches,
            "web_candidates": web_candidates,
            "selection": selection,
            "issues": _dedupe_issues(issues),
        })

    def _resolve_lead_source_hint(self, draft, lead_source_name: str, issues: List[str]):
        matches = self.matcher.fetch_entity_matches(EntityType.HEALTH_SYSTEM, lead_source_name)
        top = matches[0] if matches else None

        if is_high_confidence(top):
            if len(matches) > 1:
                issues.append(
                    f"Multiple lead-source health system matches found. Defaulting to {top.name}."
                )
            else:
                issues.append(f"Lead source matched to existing health system: {top.name}.")
            return draft.model_copy(update={
                "lead_source_type": LeadSourceType.HEALTH_SYSTEM,
                "lead_source_health_system_id": top.id,
                "lead_source_health_system_name": top.name,
                "lead_source_other": None,
            })

        if top is not None:
            issues.append(
                f"Possible lead-source health system match ({_percent(top.confidence)}%) is below "
                f"{_THRESHOLD_PERCENT}% threshold. Confirm before execution."
            )
        else:
            issues.append(f'No existing health system match found for lead source "{lead_source_name}".')
        return draft.model_copy(update={"lead_source_health_system_id": None})

    def _hydrate_update(self, action: UpdateEntityAction, lookup: CreateLookup) -> UpdateEntityAction:
        matches = self.matcher.fetch_entity_matches(action.entity_type, action.target_name)
        linked_create_id = lookup_create_action(lookup, action.entity_type, action.target_name)
        top = matches[0] if matches else None
        selected_id = top.id if is_high_confidence(top) else None

        issues = list(action.issues)
        if not matches and not linked_create_id:
            issues.append("No matching existing record found for update target.")
        elif not selected_id and not linked_create_id and top is not None:
            issues.append(
                f"Potential update target match ({_percent(top.confidence)}%) is below "
                f"{_THRESHOLD_PERCENT}% threshold. Confirm target before execution."
            )

        return action.model_copy(update={
            "target_matches": matches,
            "selected_target_id": selected_id,
            "linked_create_action_id": linked_create_id,
            "issues": _dedupe_issues(issues),
        })

    def _hydrate_contact(self, action: AddContactAction, lookup: CreateLookup) -> AddContactAction:
        matches = self.matcher.fetch_entity_matches(action.parent_type, action.parent_name)
        linked_create_id = lookup_create_action(lookup, action.parent_type, action.parent_name)
        top = matches[0] if matches else None
        selected_id = top.id if is_high_confidence(top) else None

        issues = list(action.issues)
        if not matches and not linked_create_id:
            issues.append("No matching parent record found for contact link.")
        elif not selected_id and not linked_create_id and top is not None:
            issues.append(
                f"Potential parent match ({_percent(top.confidence)}%) is below "
                f"{_THRESHOLD_PERCENT}% threshold. Confirm parent before execution."
            )

        return action.model_copy(update={
            "role_type": action.role_type or DEFAULT_ROLE_BY_PARENT[action.parent_type],
            "parent_matches": matches,
            "selected_parent_id": selected_id,
            "linked_create_action_id": linked_create_id,
            "issues": _dedupe_issues(issues),
        })

    def _hydrate_link(
        self, action: LinkCompanyCoInvestorAction, lookup: CreateLookup
    ) -> LinkCompanyCoInvestorAction:
        company_matches = self.matcher.fetch_entity_matches(EntityType.COMPANY, action.company_name)
        co_investor_matches = self.matcher.fetch_entity_matches(EntityType.CO_INVESTOR, action.co_investor_name)
        health_system_aliases = self.matcher.fetch_entity_matches(EntityType.HEALTH_SYSTEM, action.co_investor_name)
        company_create_id = lookup_create_action(lookup, EntityType.COMPANY, action.company_name)
        co_investor_create_id = lookup_create_action(lookup, EntityType.CO_INVESTOR, action.co_investor_name)

        top_company = company_matches[0] if company_matches else None
        top_co_investor = co_investor_matches[0] if co_investor_matches else None
        selected_company_id = top_company.id if is_high_confidence(top_company) else None
        selected_co_investor_id = top_co_investor.id if is_high_confidence(top_co_investor) else None

        issues = list(action.issues)
        if not company_matches and not company_create_id:
            issues.append("No matching company record found for relationship.")
        elif not selected_company_id and not company_create_id and top_company is not None:
            issues.append(
                f"Potential company match ({_percent(top_company.confidence)}%) is below "
                f"{_THRESHOLD_PERCENT}% threshold. Confirm company before execution."
            )

        if not co_investor_matches and not co_investor_create_id:
            if health_system_aliases:
                issues.append(
                    f'"{action.co_investor_name}" appears to be a health system '
                    f"({health_system_aliases[0].name}), not a co-investor."
                )
            else:
                issues.append("No matching co-investor record found for relationship.")
        elif not selected_co_investor_id and not co_investor_create_id and top_co_investor is not None:
            issues.append(
                f"Potential co-investor match ({_percent(top_co_investor.confidence)}%) is below "
                f"{_THRESHOLD_PERCENT}% threshold. Confirm co-investor before execution."
            )

        return action.model_copy(update={
            "company_matches": company_matches,
            "co_investor_matches": co_investor_matches,
            "selected_company_id": selected_company_id,
            "selected_co_investor_id": selected_co_investor_id,
            "company_create_action_id": company_create_id,
            "co_investor_create_action_id": co_investor_create_id,
            "issues": _dedupe_issues(issues),
        })
