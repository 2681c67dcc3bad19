"""
Clarification Gate — turns unresolved hydration outcomes into questions.

Behavioral Contract:
- At most one question per action; actions already resolved yield none
- Extraction warnings join the queue only when they read as a question or
  an explicit confirmation request
- The queue is deduplicated by normalized text and keeps first-seen order
- Operational warnings never become questions
"""

from typing import List, Optional

from narrative_engine.extraction.parsing import clean_text
from narrative_engine.matching.matcher import format_confidence_percent, is_below_auto_threshold
from narrative_engine.matching.normalizer import (
    entity_type_label,
    looks_like_health_system_name,
    normalize_for_lookup,
)
from narrative_engine.models.actions import ActionKind, CreateMode, NarrativeAction, NarrativeEntityMatch
from narrative_engine.models.records import EntityType

_QUESTION_PREFIXES = ("please confirm", "do you want", "should i", "which ")
_OPERATIONAL_MARKERS = (
    "requirement review is in progress",
    "when ready reply with",
    "applied intro heuristic",
    "consolidated duplicate actions",
)


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def _find_match(matches: List[NarrativeEntityMatch], match_id: Optional[str]) -> Optional[NarrativeEntityMatch]:
    if not match_id:
        return None
    return next((m for m in matches if m.id == match_id), None)


def summarize_action_requirement(action: NarrativeAction) -> str:
    kind = action.kind
    if kind == ActionKind.CREATE_ENTITY:
        return f"Create {entity_type_label(action.entity_type)}: {action.draft.name}."
    if kind == ActionKind.UPDATE_ENTITY:
        return f"Update {entity_type_label(action.entity_type)}: {action.target_name}."
    if kind == ActionKind.ADD_CONTACT:
        return f"Add contact {action.contact.name} to {action.parent_name}."
    if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
        return f"Link company {action.company_name} with co-investor {action.co_investor_name}."
    raise ValueError(f"Unhandled action kind: {kind}")


def summarize_auto_resolved_match(action: NarrativeAction) -> Optional[str]:
    """A one-line note for an action whose target was auto-resolved, else None."""
    kind = action.kind
    if kind == ActionKind.CREATE_ENTITY:
        if action.selection.mode != CreateMode.USE_EXISTING:
            return None
        match = _find_match(action.existing_matches, action.selection.existing_id)
        match = match or (action.existing_matches[0] if action.existing_matches else None)
        if match is None:
            return None
        return (
            f"Using existing {entity_type_label(action.entity_type)} record {match.name} "
            f"({format_confidence_percent(match.confidence)})."
        )

    if kind == ActionKind.UPDATE_ENTITY:
        match = _find_match(action.target_matches, action.selected_target_id)
        if match is None:
            return None
        return (
            f"Update target resolved to existing {entity_type_label(action.entity_type)} {match.name} "
            f"({format_confidence_percent(match.confidence)})."
        )

    if kind == ActionKind.ADD_CONTACT:
        match = _find_match(action.parent_matches, action.selected_parent_id)
        if match is None:
            return None
        return (
            f"Contact parent resolved to existing {entity_type_label(action.parent_type)} {match.name} "
            f"({format_confidence_percent(match.confidence)})."
        )

    if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
        company = _find_match(action.company_matches, action.selected_company_id)
        co_investor = _find_match(action.co_investor_matches, action.selected_co_investor_id)
        if company and co_investor:
            return (
                f"Relationship resolved to existing company {company.name} "
                f"and co-investor {co_investor.name}."
            )
        if company:
            return (
                f"Relationship company resolved to existing record {company.name} "
                f"({format_confidence_percent(company.confidence)})."
            )
        if co_investor:
            return (
                f"Relationship co-investor resolved to existing record {co_investor.name} "
                f"({format_confidence_percent(co_investor.confidence)})."
            )
        return None

    raise ValueError(f"Unhandled action kind: {kind}")


def build_clarification_summary(extracted_summary: str, actions: List[NarrativeAction]) -> str:
    count = len(actions)
    base = extracted_summary or f"I identified {count} candidate {_plural(count, 'change', 'changes')}."

    notes = [note for note in (summarize_auto_resolved_match(a) for a in actions) if note]
    if not notes:
        return f"{base} I will confirm one detail at a time before drafting the first execution plan."

    preview = " ".join(notes[:2])
    extra = len(notes) - 2
    additional = ""
    if extra > 0:
        additional = f" (+{extra} additional {_plural(extra, 'auto-match', 'auto-matches')})."

    resolved = f"I already resolved {len(notes)} existing {_plural(len(notes), 'match', 'matches')}."
    return f"{base} {resolved} {preview}{additional}".strip()


def _create_question(action) -> Optional[str]:
    name = action.draft.name
    if action.entity_type == EntityType.CO_INVESTOR and looks_like_health_system_name(name):
        return (
            f'"{name}" looks like a health system, not a co-investor. Should I treat it as a '
            "health-system lead source instead of creating a co-investor?"
        )

    top = action.existing_matches[0] if action.existing_matches else None
    if is_below_auto_threshold(top):
        return (
            f'I found a possible existing {entity_type_label(action.entity_type)} for "{name}": '
            f"{top.name} ({format_confidence_percent(top.confidence)}). "
            "Should I use this existing record or create a new one?"
        )

    if (
        action.selection.mode == CreateMode.CREATE_FROM_WEB
        and len(action.web_candidates) > 1
        and action.selection.web_candidate_index is None
    ):
        options = ", ".join(f'"{c.name}"' for c in action.web_candidates[:3])
        return f'I found multiple web entities for "{name}" ({options}). Which one should I use?'

    return None


def _update_question(action) -> Optional[str]:
    if action.selected_target_id or action.linked_create_action_id:
        return None
    label = entity_type_label(action.entity_type)
    top = action.target_matches[0] if action.target_matches else None
    if is_below_auto_threshold(top):
        return (
            f'I found a possible existing {label} update target for "{action.target_name}": '
            f"{top.name} ({format_confidence_percent(top.confidence)}). Should I update this record?"
        )
    return (
        f'I could not confidently resolve which {label} to update for "{action.target_name}". '
        "Which record should be updated?"
    )


def _contact_question(action) -> Optional[str]:
    if action.selected_parent_id or action.linked_create_action_id:
        return None
    label = entity_type_label(action.parent_type)
    top = action.parent_matches[0] if action.parent_matches else None
    if is_below_auto_threshold(top):
        return (
            f'I found a possible existing {label} for contact "{action.contact.name}": '
            f"{top.name} ({format_confidence_percent(top.confidence)}). Should I attach the contact there?"
        )
    return (
        f'I could not confidently resolve the parent {label} for contact "{action.contact.name}". '
        "Which record should I use?"
    )


def _link_question(action) -> Optional[str]:
    pair = f"{action.company_name} <-> {action.co_investor_name}"

    if any("appears to be a health system" in normalize_for_lookup(i) for i in action.issues):
        return (
            f'"{action.co_investor_name}" appears to be a health system. Should I set it as the '
            f'lead-source health system for "{action.company_name}" and keep co-investor links '
            "only for named funds?"
        )

    if not action.selected_company_id and not action.company_create_action_id:
        top = action.company_matches[0] if action.company_matches else None
        if is_below_auto_threshold(top):
            return (
                f"I found a possible existing company for this relationship: {top.name} "
                f"({format_confidence_percent(top.confidence)}). Should I use it?"
            )
        return (
            f'I could not confidently resolve the company for the relationship "{pair}". '
            "Which company should I use?"
        )

    if not action.selected_co_investor_id and not action.co_investor_create_action_id:
        top = action.co_investor_matches[0] if action.co_investor_matches else None
        if is_below_auto_threshold(top):
            return (
                f"I found a possible existing co-investor for this relationship: {top.name} "
                f"({format_confidence_percent(top.confidence)}). Should I use it?"
            )
        return (
            f'I could not confidently resolve the co-investor for "{pair}". '
            "Which co-investor should I use?"
        )

    return None


def build_action_clarification_question(action: NarrativeAction) -> Optional[str]:
    """The single question a human must answer for this action, or None."""
    kind = action.kind
    if kind == ActionKind.CREATE_ENTITY:
        return _create_question(action)
    if kind == ActionKind.UPDATE_ENTITY:
        return _update_question(action)
    if kind == ActionKind.ADD_CONTACT:
        return _contact_question(action)
    if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
        return _link_question(action)
    raise ValueError(f"Unhandled action kind: {kind}")


def is_clarification_warning_candidate(warning: str) -> bool:
    normalized = normalize_for_lookup(warning)
    if not normalized:
        return False
    if normalized.startswith("candidate requirement"):
        return False
    if any(marker in normalized for marker in _OPERATIONAL_MARKERS):
        return False
    return "?" in warning or normalized.startswith(_QUESTION_PREFIXES)


def is_operational_warning(warning: str) -> bool:
    return not is_clarification_warning_candidate(warning)


def build_clarification_question_queue(
    actions: List[NarrativeAction], extraction_warnings: List[str]
) -> List[str]:
    """Ordered, deduplicated questions. Excluded actions contribute nothing."""
    queued: List[str] = []
    seen = set()

    def push(value: Optional[str]) -> None:
        cleaned = clean_text(value)
        key = normalize_for_lookup(cleaned)
        if not key or key in seen:
            return
        seen.add(key)
        queued.append(cleaned)

    for action in actions:
        if action.include:
            push(build_action_clarification_question(action))

    for warning in extraction_warnings:
        cleaned = clean_text(warning)
        if cleaned and is_clarification_warning_candidate(cleaned):
            push(cleaned)

    return queued
