"""
Heuristic Post-Processor — deterministic safety net after LLM extraction.

Scans the narrative for "<introducer> introduced us to <company>" phrasing
and synthesizes the actions the LLM may have missed:
  - a COMPANY create carrying a health-system lead-source hint
  - for fund/investor introducers, a CO_INVESTOR create and an INVESTOR link
  - for health-system introducers, only the lead-source hint

Chained phrasing ("X introduced us to Y intro to Z") resolves to company Z;
a health-system intermediary Y becomes the lead-source hint.

Runs in addition to extraction, never instead of it; the deduplicator
merges any overlap afterwards.
"""

import re
from typing import List, Optional, Set, Tuple

from pydantic import BaseModel

from narrative_engine.extraction.parsing import build_action_id, clean_text
from narrative_engine.matching.normalizer import (
    clean_entity_name,
    clean_name_fragment,
    infer_health_system_name_from_introducer,
    infer_introducer_type,
    normalize_entity_name_for_lookup,
)
from narrative_engine.models.actions import (
    ActionKind,
    CreateEntityAction,
    LinkCompanyCoInvestorAction,
    NarrativeAction,
    NarrativeEntityDraft,
)
from narrative_engine.models.records import EntityType, LeadSourceType, RelationshipType

INTRO_HEURISTIC_WARNING = (
    "Applied intro heuristic: mapped 'introduced us to' phrasing into investor "
    "relationship and lead-source signals."
)
INTRO_RATIONALE = "Added from narrative introduction phrasing."

_SENTENCE_SPLIT = re.compile(r"\r?\n|(?<=[.!?])\s+")
_INTRO_PATTERN = re.compile(
    r"\b(.{2,120}?)\s+introduced\s+(?:us|me|our\s+team|the\s+team)?\s*to\s+(.{2,120})$",
    re.IGNORECASE,
)
_CHAIN_SPLIT = re.compile(
    r"\s+(?:introduced|intro|referred)\s+(?:us\s+|me\s+)?to\s+", re.IGNORECASE
)


class IntroductionSignal(BaseModel):
    introducer_name: str
    introducer_type: EntityType
    company_name: str
    health_system_hint: str


def _split_company_chain(fragment: str) -> Tuple[str, List[str]]:
    """'Acme Health intro to CarePilot' -> ('CarePilot', ['Acme Health'])."""
    parts = [clean_name_fragment(p) for p in _CHAIN_SPLIT.split(fragment)]
    parts = [p for p in parts if p]
    if not parts:
        return "", []
    return parts[-1], parts[:-1]


def _intermediary_health_system(intermediaries: List[str]) -> Optional[str]:
    for name in reversed(intermediaries):
        if infer_introducer_type(name) == EntityType.HEALTH_SYSTEM:
            return clean_entity_name(name, EntityType.HEALTH_SYSTEM) or None
    return None


def extract_introduction_signals(narrative: str) -> List[IntroductionSignal]:
    if not (narrative or "").strip():
        return []

    signals = []
    for sentence in _SENTENCE_SPLIT.split(narrative):
        sentence = sentence.strip()
        if not sentence:
            continue
        match = _INTRO_PATTERN.search(sentence)
        if not match:
            continue

        introducer = clean_name_fragment(match.group(1))
        company_fragment, intermediaries = _split_company_chain(clean_name_fragment(match.group(2)))
        company = clean_entity_name(company_fragment, EntityType.COMPANY)
        if not introducer or not company:
            continue

        hint = _intermediary_health_system(intermediaries) or infer_health_system_name_from_introducer(introducer)
        if not hint:
            continue

        signals.append(IntroductionSignal(
            introducer_name=introducer,
            introducer_type=infer_introducer_type(introducer),
            company_name=company,
            health_system_hint=hint,
        ))
    return signals


def _unique_id(candidate: str, taken: Set[str]) -> str:
    action_id = candidate
    suffix = 2
    while action_id in taken:
        action_id = f"{candidate}-{suffix}"
        suffix += 1
    taken.add(action_id)
    return action_id


def _find_create(
    actions: List[NarrativeAction], entity_type: EntityType, key: str
) -> Optional[int]:
    for index, action in enumerate(actions):
        if (
            action.kind == ActionKind.CREATE_ENTITY.value
            and action.entity_type == entity_type
            and normalize_entity_name_for_lookup(action.draft.name, entity_type) == key
        ):
            return index
    return None


def _find_link(
    actions: List[NarrativeAction], company_key: str, co_investor_key: str
) -> Optional[int]:
    for index, action in enumerate(actions):
        if (
            action.kind == ActionKind.LINK_COMPANY_CO_INVESTOR.value
            and normalize_entity_name_for_lookup(action.company_name, EntityType.COMPANY) == company_key
            and normalize_entity_name_for_lookup(action.co_investor_name, EntityType.CO_INVESTOR)
            == co_investor_key
        ):
            return index
    return None


def apply_introduction_heuristics(
    narrative: str, actions: List[NarrativeAction]
) -> Tuple[List[NarrativeAction], List[str]]:
    """Returns (augmented actions, warnings). The input list is not mutated."""
    signals = extract_introduction_signals(narrative)
    if not signals:
        return list(actions), []

    next_actions: List[NarrativeAction] = list(actions)
    taken_ids = {action.id for action in next_actions}
    added = 0

    for signal in signals:
        company_key = normalize_entity_name_for_lookup(signal.company_name, EntityType.COMPANY)
        introducer_key = normalize_entity_name_for_lookup(signal.introducer_name, signal.introducer_type)
        if not company_key or not introducer_key:
            continue

        company_index = _find_create(next_actions, EntityType.COMPANY, company_key)
        if company_index is not None:
            existing = next_actions[company_index]
            next_actions[company_index] = existing.model_copy(update={
                "draft": existing.draft.model_copy(update={
                    "lead_source_type": LeadSourceType.HEALTH_SYSTEM,
                    "lead_source_health_system_name": signal.health_system_hint,
                    "lead_source_other": None,
                }),
            })
        else:
            next_actions.append(CreateEntityAction(
                id=_unique_id(
                    build_action_id(ActionKind.CREATE_ENTITY, len(next_actions), signal.company_name),
                    taken_ids,
                ),
                rationale=INTRO_RATIONALE,
                confidence=0.62,
                entity_type=EntityType.COMPANY,
                draft=NarrativeEntityDraft(
                    name=signal.company_name,
                    lead_source_type=LeadSourceType.HEALTH_SYSTEM,
                    lead_source_health_system_name=signal.health_system_hint,
                ),
            ))
            added += 1

        if signal.introducer_type == EntityType.HEALTH_SYSTEM:
            continue

        if _find_create(next_actions, EntityType.CO_INVESTOR, introducer_key) is None:
            next_actions.append(CreateEntityAction(
                id=_unique_id(
                    build_action_id(ActionKind.CREATE_ENTITY, len(next_actions), signal.introducer_name),
                    taken_ids,
                ),
                rationale=INTRO_RATIONALE,
                confidence=0.58,
                entity_type=EntityType.CO_INVESTOR,
                draft=NarrativeEntityDraft(name=signal.introducer_name),
            ))
            added += 1

        intro_note = f"{signal.introducer_name} introduced us to {signal.company_name}."
        link_index = _find_link(next_actions, company_key, introducer_key)
        if link_index is not None:
            link = next_actions[link_index]
            notes = clean_text(link.notes)
            if "introduced" not in notes.lower():
                notes = f"{notes} {intro_note}".strip()
                next_actions[link_index] = link.model_copy(update={"notes": notes})
            continue

        next_actions.append(LinkCompanyCoInvestorAction(
            id=_unique_id(
                build_action_id(
                    ActionKind.LINK_COMPANY_CO_INVESTOR,
                    len(next_actions),
                    f"{signal.company_name}-{signal.introducer_name}",
                ),
                taken_ids,
            ),
            rationale=INTRO_RATIONALE,
            confidence=0.65,
            company_name=signal.company_name,
            co_investor_name=signal.introducer_name,
            relationship_type=RelationshipType.INVESTOR,
            notes=intro_note,
        ))
        added += 1

    if added == 0:
        return next_actions, []
    return next_actions, [INTRO_HEURISTIC_WARNING]
