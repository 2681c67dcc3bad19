"""
Action Deduplicator — one action per logical entity, update, contact or link.

Behavioral Contract:
- Keys: CREATE/UPDATE by entity type + lookup-normalized name, contacts by
  parent + contact name, links by company + co-investor + relationship
- On collision the first action wins conflicting non-empty fields; later
  actions only fill gaps
- include is OR-ed, confidence is MAX-ed, rationale/notes are concatenated
  without repeats, issues are unioned
- Convergent: deduping an already-deduped list changes nothing
"""

from typing import Any, Dict, List, Optional

from narrative_engine.matching.normalizer import clean_entity_name, normalize_entity_name_for_lookup
from narrative_engine.models.actions import ActionKind, NarrativeAction
from narrative_engine.models.records import EntityType


def merge_unique_strings(*values: Optional[str]) -> Optional[str]:
    """Join non-empty strings, skipping ones already contained in the result."""
    merged: List[str] = []
    for value in values:
        text = " ".join((value or "").split())
        if not text:
            continue
        if any(text == part or text in part for part in merged):
            continue
        merged.append(text)
    return " ".join(merged) or None


def action_key(action: NarrativeAction) -> str:
    kind = action.kind
    if kind == ActionKind.CREATE_ENTITY:
        name = normalize_entity_name_for_lookup(action.draft.name, action.entity_type)
        return f"CREATE:{action.entity_type.value}:{name}"
    if kind == ActionKind.UPDATE_ENTITY:
        name = normalize_entity_name_for_lookup(action.target_name, action.entity_type)
        return f"UPDATE:{action.entity_type.value}:{name}"
    if kind == ActionKind.ADD_CONTACT:
        parent = normalize_entity_name_for_lookup(action.parent_name, action.parent_type)
        contact = normalize_entity_name_for_lookup(action.contact.name)
        return f"CONTACT:{action.parent_type.value}:{parent}:{contact}"
    if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
        company = normalize_entity_name_for_lookup(action.company_name, EntityType.COMPANY)
        co_investor = normalize_entity_name_for_lookup(action.co_investor_name, EntityType.CO_INVESTOR)
        return f"LINK:{company}:{co_investor}:{action.relationship_type.value}"
    raise ValueError(f"Unhandled action kind: {kind}")


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _fill_gaps(current: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current)
    for key, value in incoming.items():
        if not _has_value(merged.get(key)) and _has_value(value):
            merged[key] = value
    return merged


def _merge_envelope(current: NarrativeAction, incoming: NarrativeAction) -> Dict[str, Any]:
    confidences = [c for c in (current.confidence, incoming.confidence) if c is not None]
    return {
        "include": current.include or incoming.include,
        "confidence": max(confidences) if confidences else None,
        "rationale": merge_unique_strings(current.rationale, incoming.rationale),
        "issues": list(dict.fromkeys([*current.issues, *incoming.issues])),
    }


def _merge(current: NarrativeAction, incoming: NarrativeAction) -> NarrativeAction:
    update = _merge_envelope(current, incoming)
    kind = current.kind

    if kind == ActionKind.CREATE_ENTITY:
        draft = _fill_gaps(current.draft.model_dump(), incoming.draft.model_dump())
        if not draft.get("name") or len(draft["name"]) > len(incoming.draft.name):
            draft["name"] = clean_entity_name(incoming.draft.name, incoming.entity_type) or draft["name"]
        update["draft"] = type(current.draft).model_validate(draft)
    elif kind == ActionKind.UPDATE_ENTITY:
        patch = _fill_gaps(
            current.patch.model_dump(exclude_unset=True),
            incoming.patch.model_dump(exclude_unset=True),
        )
        update["patch"] = type(current.patch).model_validate(patch)
    elif kind == ActionKind.ADD_CONTACT:
        contact = _fill_gaps(current.contact.model_dump(), incoming.contact.model_dump())
        update["contact"] = type(current.contact).model_validate(contact)
        if current.role_type is None:
            update["role_type"] = incoming.role_type
    elif kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
        update["notes"] = merge_unique_strings(current.notes, incoming.notes)
        update["investment_amount_usd"] = (
            current.investment_amount_usd
            if current.investment_amount_usd is not None
            else incoming.investment_amount_usd
        )
    else:
        raise ValueError(f"Unhandled action kind: {kind}")

    return current.model_copy(update=update)


def dedupe_actions(actions: List[NarrativeAction]) -> List[NarrativeAction]:
    deduped: List[NarrativeAction] = []
    index_by_key: Dict[str, int] = {}

    for action in actions:
        key = action_key(action)
        existing_index = index_by_key.get(key)
        if existing_index is None:
            index_by_key[key] = len(deduped)
            deduped.append(action)
            continue
        deduped[existing_index] = _merge(deduped[existing_index], action)

    return deduped
