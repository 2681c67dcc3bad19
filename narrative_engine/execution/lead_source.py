"""
Company lead-source resolution at execution time.

Behavioral Contract:
- An explicit lead-source health system id wins when it still exists
- Otherwise the hinted name resolves through the matcher at the shared
  auto-match threshold
- Anything unresolved falls back to OTHER with the hint (or
  "Narrative intake") as free text; a dangling id is never written
"""

from typing import Optional

from pydantic import BaseModel

from narrative_engine.matching.matcher import EntityMatcher
from narrative_engine.matching.normalizer import (
    infer_health_system_name_from_introducer,
    normalize_for_lookup,
)
from narrative_engine.models.actions import NarrativeEntityDraft, NarrativeEntityPatch
from narrative_engine.models.records import EntityType, HealthSystem, LeadSourceType
from narrative_engine.store.entity_store import EntityStore

NARRATIVE_INTAKE = "Narrative intake"

_INTRODUCTION_PHRASES = (
    "introduced us to",
    "introduced to",
    "intro to",
    "referred us to",
    "referred to",
)


class LeadSourceResolution(BaseModel):
    lead_source_type: LeadSourceType
    lead_source_health_system_id: Optional[str] = None
    lead_source_other: Optional[str] = None


def _text(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _resolve_health_system(
    store: EntityStore,
    matcher: EntityMatcher,
    explicit_id: Optional[str],
    hinted_name: Optional[str],
) -> Optional[str]:
    explicit_id = _text(explicit_id)
    if explicit_id and store.find_unique(EntityType.HEALTH_SYSTEM, explicit_id) is not None:
        return explicit_id
    if hinted_name:
        return matcher.resolve_health_system_id(hinted_name)
    return None


def resolve_company_lead_source(
    draft: NarrativeEntityDraft, store: EntityStore, matcher: EntityMatcher
) -> LeadSourceResolution:
    if draft.lead_source_type == LeadSourceType.HEALTH_SYSTEM:
        hinted_name = _text(draft.lead_source_health_system_name) or _text(draft.lead_source_other)
        resolved_id = _resolve_health_system(
            store, matcher, draft.lead_source_health_system_id, hinted_name
        )
        if resolved_id:
            return LeadSourceResolution(
                lead_source_type=LeadSourceType.HEALTH_SYSTEM,
                lead_source_health_system_id=resolved_id,
            )
        return LeadSourceResolution(
            lead_source_type=LeadSourceType.OTHER,
            lead_source_other=hinted_name or NARRATIVE_INTAKE,
        )

    return LeadSourceResolution(
        lead_source_type=LeadSourceType.OTHER,
        lead_source_other=_text(draft.lead_source_other) or NARRATIVE_INTAKE,
    )


def build_lead_source_update(
    patch: NarrativeEntityPatch, store: EntityStore, matcher: EntityMatcher
) -> dict:
    """
    Store fields for a company patch's lead source. Empty when the patch
    does not touch the lead source.
    """
    requested = patch.lead_source_type
    if requested is None:
        if patch.lead_source_health_system_id or patch.lead_source_health_system_name:
            requested = LeadSourceType.HEALTH_SYSTEM
        elif patch.lead_source_other:
            requested = LeadSourceType.OTHER
        else:
            return {}

    if requested == LeadSourceType.OTHER:
        return {
            "lead_source_type": LeadSourceType.OTHER,
            "lead_source_health_system_id": None,
            "lead_source_other": _text(patch.lead_source_other) or NARRATIVE_INTAKE,
        }

    hinted_name = _text(patch.lead_source_health_system_name) or _text(patch.lead_source_other)
    resolved_id = _resolve_health_system(store, matcher, patch.lead_source_health_system_id, hinted_name)
    if resolved_id:
        return {
            "lead_source_type": LeadSourceType.HEALTH_SYSTEM,
            "lead_source_health_system_id": resolved_id,
            "lead_source_other": None,
        }
    return {
        "lead_source_type": LeadSourceType.OTHER,
        "lead_source_health_system_id": None,
        "lead_source_other": hinted_name or NARRATIVE_INTAKE,
    }


def has_introduction_language(value: Optional[str]) -> bool:
    normalized = normalize_for_lookup(value)
    return bool(normalized) and any(phrase in normalized for phrase in _INTRODUCTION_PHRASES)


def resolve_introducer_health_system(
    store: EntityStore, matcher: EntityMatcher, co_investor_id: str, co_investor_name: str
) -> Optional[HealthSystem]:
    """The health system behind an introducing co-investor: venture-partner record first, then name."""
    partner_system = store.find_venture_partner_health_system(co_investor_id)
    if partner_system is not None:
        return partner_system

    hint = infer_health_system_name_from_introducer(co_investor_name)
    if not hint:
        return None
    resolved_id = matcher.resolve_health_system_id(hint)
    if not resolved_id:
        return None
    return store.find_unique(EntityType.HEALTH_SYSTEM, resolved_id)


def needs_lead_source_backfill(company) -> bool:
    """True when a company has no explicit lead source yet."""
    if company.lead_source_health_system_id:
        return False
    other = company.lead_source_other
    return not other or normalize_for_lookup(other) == normalize_for_lookup(NARRATIVE_INTAKE)
