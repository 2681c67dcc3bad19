"""
Permissive parsing of raw LLM extraction output into typed actions.

Behavioral Contract:
- Every field read from the response is untrusted and optional
- Kind and entity type are inferred from synonyms and near-miss spellings
- An action that still cannot be converted yields None and is dropped
- A company/health-system "link" becomes a COMPANY lead-source update
"""

import json
import re
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from narrative_engine.matching.normalizer import clean_entity_name, looks_like_health_system_name
from narrative_engine.models.actions import (
    ActionKind,
    AddContactAction,
    CreateEntityAction,
    LinkCompanyCoInvestorAction,
    NarrativeAction,
    NarrativeContactPayload,
    NarrativeEntityDraft,
    NarrativeEntityPatch,
    UpdateEntityAction,
)
from narrative_engine.models.records import (
    CompanyPrimaryCategory,
    CompanyType,
    ContactRoleType,
    EntityType,
    LeadSourceType,
    RelationshipType,
)

COMPANY_HEALTH_SYSTEM_LINK_ISSUE = (
    "Company-health-system link request was mapped to a company lead-source update."
)

_TRUE_WORDS = {"true", "yes", "1"}
_FALSE_WORDS = {"false", "no", "0"}


# --- Scalars ---

def clean_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def clean_optional_text(value: Any) -> Optional[str]:
    return clean_text(value) or None


def clean_number(value: Any) -> Optional[float]:
    """
    Accepts numbers and strings like "2.5m", "750k", "1,000".
    Anything unusable or negative becomes None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        normalized = value.strip().lower().replace(",", "")
        if not normalized:
            return None
        multiplier = 1_000_000 if "m" in normalized else 1_000 if "k" in normalized else 1
        match = re.match(r"[+-]?(?:\d+\.?\d*|\.\d+)", re.sub(r"[^0-9.+-]", "", normalized))
        if not match:
            return None
        number = float(match.group(0)) * multiplier
    else:
        return None

    if number != number or number in (float("inf"), float("-inf")) or number < 0:
        return None
    return number


def clean_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_WORDS:
        return True
    if normalized in _FALSE_WORDS:
        return False
    return None


def clean_confidence(value: Any) -> Optional[float]:
    """A confidence clamped into [0, 1], or None."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value != value:
            return None
        return max(0.0, min(1.0, float(value)))
    number = clean_number(value)
    if number is None:
        return None
    return max(0.0, min(1.0, number))


# --- JSON ---

def _parse_json_object(raw: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def extract_json_payload(raw: str) -> Dict[str, Any]:
    """
    Parse the response as a JSON object, falling back to the outermost
    {...} span when the model wrapped its JSON in prose or fences.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return {}

    strict = _parse_json_object(trimmed)
    if strict:
        return strict

    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start >= 0 and end > start:
        return _parse_json_object(trimmed[start:end + 1])
    return {}


def object_like(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _field(source: Mapping[str, Any], name: str) -> Any:
    """Read a camelCase key, tolerating its snake_case spelling."""
    if name in source:
        return source[name]
    return source.get(to_snake(name))


def _token(value: Any) -> str:
    """'co-investor ' -> 'CO_INVESTOR'."""
    return re.sub(r"[^A-Z0-9]+", "_", clean_text(value).upper()).strip("_")


# --- Kinds and types ---

def parse_entity_type(value: Any) -> Optional[EntityType]:
    raw = _token(value)
    if raw in ("HEALTH_SYSTEM", "HEALTHSYSTEM", "HEALTH_SYSTEMS"):
        return EntityType.HEALTH_SYSTEM
    if raw in ("COMPANY", "COMPANIES"):
        return EntityType.COMPANY
    if raw in ("CO_INVESTOR", "COINVESTOR", "CO_INVESTORS", "INVESTOR", "CO_INVESTMENT_FIRM"):
        return EntityType.CO_INVESTOR
    return None


def infer_entity_type_from_raw_kind(value: Any) -> Optional[EntityType]:
    """'CREATE_HEALTH_SYSTEM' -> HEALTH_SYSTEM, 'ADD_COMPANY' -> COMPANY."""
    raw = _token(value)
    if not raw:
        return None
    if "HEALTH" in raw and "SYSTEM" in raw:
        return EntityType.HEALTH_SYSTEM
    if "COMPANY" in raw:
        return EntityType.COMPANY
    if "INVESTOR" in raw:
        return EntityType.CO_INVESTOR
    return None


def infer_entity_type_from_action_source(
    source: Mapping[str, Any], action_kind: Optional[ActionKind] = None
) -> Optional[EntityType]:
    direct = (
        parse_entity_type(_field(source, "entityType"))
        or parse_entity_type(_field(source, "parentType"))
        or parse_entity_type(_field(source, "targetType"))
        or parse_entity_type(source.get("kind"))
    )
    if direct:
        return direct

    from_kind = infer_entity_type_from_raw_kind(source.get("kind"))
    if from_kind:
        return from_kind

    patch = object_like(source.get("patch"))
    if clean_text(_field(patch, "leadSourceType")) or clean_text(_field(patch, "leadSourceHealthSystemName")):
        return EntityType.COMPANY

    if action_kind == ActionKind.UPDATE_ENTITY:
        if clean_text(_field(source, "companyName")):
            return EntityType.COMPANY
        if clean_text(_field(source, "coInvestorName")):
            return EntityType.CO_INVESTOR
        if clean_text(_field(source, "healthSystemName")):
            return EntityType.HEALTH_SYSTEM

    return None


def parse_action_kind(value: Any) -> Optional[ActionKind]:
    raw = _token(value)
    if not raw:
        return None

    if raw in ("ADD_CONTACT", "CREATE_CONTACT", "LINK_CONTACT") or (
        "CONTACT" in raw and ("ADD" in raw or "CREATE" in raw or "LINK" in raw)
    ):
        return ActionKind.ADD_CONTACT
    if raw in (
        "LINK_COMPANY_CO_INVESTOR",
        "LINK_COMPANY_COINVESTOR",
        "CREATE_INVESTOR_RELATIONSHIP",
        "CREATE_CO_INVESTOR_RELATIONSHIP",
    ) or ("LINK" in raw and "CO" in raw and "INVESTOR" in raw):
        return ActionKind.LINK_COMPANY_CO_INVESTOR
    if raw in ("UPDATE_ENTITY", "UPDATE", "EDIT_ENTITY", "PATCH_ENTITY") or raw.startswith("UPDATE_"):
        return ActionKind.UPDATE_ENTITY
    if raw in ("CREATE_ENTITY", "CREATE", "ADD_ENTITY", "NEW_ENTITY") or raw.startswith(("CREATE_", "ADD_")):
        return ActionKind.CREATE_ENTITY
    return None


def is_company_health_system_link_kind(value: Any) -> bool:
    raw = _token(value)
    return bool(raw) and all(word in raw for word in ("LINK", "COMPANY", "HEALTH", "SYSTEM"))


def parse_role_type(value: Any) -> Optional[ContactRoleType]:
    """None when absent so the hydrator can default by parent; OTHER when unrecognized."""
    raw = _token(value)
    if not raw:
        return None
    try:
        return ContactRoleType(raw)
    except ValueError:
        return ContactRoleType.OTHER


def parse_relationship_type(value: Any) -> RelationshipType:
    raw = _token(value)
    try:
        return RelationshipType(raw)
    except ValueError:
        pass
    if "PARTNER" in raw:
        return RelationshipType.PARTNER
    return RelationshipType.INVESTOR


def _parse_lead_source_type(value: Any) -> Optional[LeadSourceType]:
    raw = _token(value)
    if raw in (LeadSourceType.HEALTH_SYSTEM.value, LeadSourceType.OTHER.value):
        return LeadSourceType(raw)
    return None


def _parse_enum(enum_cls, value: Any):
    try:
        return enum_cls(_token(value))
    except ValueError:
        return None


def build_action_id(kind: ActionKind, index: int, label: Optional[str] = None) -> str:
    """'<kind>-<n>-<slug>', stable for a given extraction."""
    compact = re.sub(r"[^a-z0-9]+", "-", (label or "").lower()).strip("-")[:36]
    base = f"{kind.value.lower()}-{index + 1}"
    return f"{base}-{compact}" if compact else base


# --- Drafts and patches ---

def normalize_draft(
    raw_draft: Any, fallback_name: str, entity_type: Optional[EntityType] = None
) -> Optional[NarrativeEntityDraft]:
    draft = object_like(raw_draft)
    name = clean_entity_name(clean_text(draft.get("name")) or fallback_name, entity_type)
    if not name:
        return None

    try:
        return NarrativeEntityDraft(
            name=name,
            legal_name=clean_optional_text(_field(draft, "legalName")),
            website=clean_optional_text(draft.get("website")),
            headquarters_city=clean_optional_text(_field(draft, "headquartersCity")),
            headquarters_state=clean_optional_text(_field(draft, "headquartersState")),
            headquarters_country=clean_optional_text(_field(draft, "headquartersCountry")),
            research_notes=clean_optional_text(_field(draft, "researchNotes") or draft.get("notes")),
            is_limited_partner=clean_boolean(_field(draft, "isLimitedPartner")),
            is_alliance_member=clean_boolean(_field(draft, "isAllianceMember")),
            limited_partner_investment_usd=clean_number(_field(draft, "limitedPartnerInvestmentUsd")),
            is_seed_investor=clean_boolean(_field(draft, "isSeedInvestor")),
            is_series_a_investor=clean_boolean(_field(draft, "isSeriesAInvestor")),
            investment_notes=clean_optional_text(_field(draft, "investmentNotes")),
            company_type=_parse_enum(CompanyType, _field(draft, "companyType")),
            primary_category=_parse_enum(CompanyPrimaryCategory, _field(draft, "primaryCategory")),
            primary_category_other=clean_optional_text(_field(draft, "primaryCategoryOther")),
            lead_source_type=_parse_lead_source_type(_field(draft, "leadSourceType")),
            lead_source_health_system_id=clean_optional_text(_field(draft, "leadSourceHealthSystemId")),
            lead_source_health_system_name=clean_optional_text(_field(draft, "leadSourceHealthSystemName")),
            lead_source_other=clean_optional_text(_field(draft, "leadSourceOther")),
            description=clean_optional_text(draft.get("description")),
        )
    except ValidationError:
        return None


def normalize_patch(raw_patch: Any) -> NarrativeEntityPatch:
    """Only keys with usable values end up set on the patch."""
    patch = object_like(raw_patch)
    values = {
        "name": clean_optional_text(patch.get("name")),
        "legal_name": clean_optional_text(_field(patch, "legalName")),
        "website": clean_optional_text(patch.get("website")),
        "headquarters_city": clean_optional_text(_field(patch, "headquartersCity")),
        "headquarters_state": clean_optional_text(_field(patch, "headquartersState")),
        "headquarters_country": clean_optional_text(_field(patch, "headquartersCountry")),
        "research_notes": clean_optional_text(_field(patch, "researchNotes") or patch.get("notes")),
        "investment_notes": clean_optional_text(_field(patch, "investmentNotes")),
        "description": clean_optional_text(patch.get("description")),
        "lead_source_type": _parse_lead_source_type(_field(patch, "leadSourceType")),
        "lead_source_health_system_id": clean_optional_text(_field(patch, "leadSourceHealthSystemId")),
        "lead_source_health_system_name": clean_optional_text(_field(patch, "leadSourceHealthSystemName")),
        "lead_source_other": clean_optional_text(_field(patch, "leadSourceOther")),
        "lead_source_notes": clean_optional_text(_field(patch, "leadSourceNotes")),
    }
    return NarrativeEntityPatch(**{k: v for k, v in values.items() if v is not None})


# --- Actions ---

def _first_text(source: Mapping[str, Any], *names: str) -> str:
    for name in names:
        text = clean_text(_field(source, name))
        if text:
            return text
    return ""


def _convert_company_health_system_link(
    source: Mapping[str, Any], index: int
) -> Optional[UpdateEntityAction]:
    company_name = clean_entity_name(
        _first_text(source, "companyName", "targetName", "parentName", "name"),
        EntityType.COMPANY,
    )
    health_system_name = clean_entity_name(
        _first_text(
            source, "healthSystemName", "relatedName", "linkedName",
            "counterpartyName", "otherEntityName",
        ),
        EntityType.HEALTH_SYSTEM,
    )
    if not company_name or not health_system_name:
        return None

    return UpdateEntityAction(
        id=build_action_id(ActionKind.UPDATE_ENTITY, index, company_name),
        rationale=clean_optional_text(source.get("rationale")),
        confidence=clean_confidence(source.get("confidence")),
        issues=[COMPANY_HEALTH_SYSTEM_LINK_ISSUE],
        entity_type=EntityType.COMPANY,
        target_name=company_name,
        patch=NarrativeEntityPatch(
            lead_source_type=LeadSourceType.HEALTH_SYSTEM,
            lead_source_health_system_name=health_system_name,
            lead_source_notes=(
                clean_optional_text(source.get("notes"))
                or f"{health_system_name} referenced as linked health system for {company_name}."
            ),
        ),
    )


def _convert_create(source, index, rationale, confidence) -> Optional[CreateEntityAction]:
    entity_type = (
        infer_entity_type_from_action_source(source, ActionKind.CREATE_ENTITY)
        or parse_entity_type(_field(source, "targetName"))
    )
    if not entity_type:
        return None

    fallback_name = clean_text(object_like(source.get("draft")).get("name")) or _first_text(
        source, "targetName", "parentName", "companyName", "coInvestorName"
    )
    draft = normalize_draft(source.get("draft"), fallback_name, entity_type)
    if draft is None:
        return None
    if entity_type == EntityType.CO_INVESTOR and looks_like_health_system_name(draft.name):
        return None

    return CreateEntityAction(
        id=build_action_id(ActionKind.CREATE_ENTITY, index, draft.name),
        rationale=rationale,
        confidence=confidence,
        entity_type=entity_type,
        draft=draft,
    )


def _convert_update(source, index, rationale, confidence) -> Optional[UpdateEntityAction]:
    entity_type = infer_entity_type_from_action_source(source, ActionKind.UPDATE_ENTITY)
    if not entity_type:
        return None

    target_name = clean_entity_name(
        _first_text(source, "targetName", "companyName", "coInvestorName", "healthSystemName")
        or clean_text(object_like(source.get("patch")).get("name"))
        or _first_text(source, "parentName", "name"),
        entity_type,
    )
    if not target_name:
        return None

    return UpdateEntityAction(
        id=build_action_id(ActionKind.UPDATE_ENTITY, index, target_name),
        rationale=rationale,
        confidence=confidence,
        entity_type=entity_type,
        target_name=target_name,
        patch=normalize_patch(source.get("patch")),
    )


def _convert_contact(source, index, rationale, confidence) -> Optional[AddContactAction]:
    parent_type = (
        parse_entity_type(_field(source, "parentType"))
        or parse_entity_type(_field(source, "entityType"))
        or parse_entity_type(source.get("kind"))
    )
    if not parent_type:
        return None

    contact = object_like(source.get("contact"))
    parent_name = clean_entity_name(_first_text(source, "parentName", "targetName"), parent_type)
    contact_name = clean_text(contact.get("name")) or _first_text(source, "targetName")
    if not parent_name or not contact_name:
        return None

    return AddContactAction(
        id=build_action_id(ActionKind.ADD_CONTACT, index, f"{parent_name}-{contact_name}"),
        rationale=rationale,
        confidence=confidence,
        parent_type=parent_type,
        parent_name=parent_name,
        role_type=parse_role_type(_field(source, "roleType")),
        contact=NarrativeContactPayload(
            name=contact_name,
            title=clean_optional_text(contact.get("title")),
            relationship_title=clean_optional_text(_field(contact, "relationshipTitle")),
            email=clean_optional_text(contact.get("email")),
            phone=clean_optional_text(contact.get("phone")),
            linkedin_url=clean_optional_text(_field(contact, "linkedinUrl") or contact.get("url")),
        ),
    )


def _convert_link(source, index, rationale, confidence) -> Optional[LinkCompanyCoInvestorAction]:
    company_name = clean_entity_name(_first_text(source, "companyName"), EntityType.COMPANY)
    co_investor_name = clean_entity_name(_first_text(source, "coInvestorName"), EntityType.CO_INVESTOR)
    if not company_name or not co_investor_name:
        return None
    if looks_like_health_system_name(co_investor_name):
        return None

    return LinkCompanyCoInvestorAction(
        id=build_action_id(
            ActionKind.LINK_COMPANY_CO_INVESTOR, index, f"{company_name}-{co_investor_name}"
        ),
        rationale=rationale,
        confidence=confidence,
        company_name=company_name,
        co_investor_name=co_investor_name,
        relationship_type=parse_relationship_type(_field(source, "relationshipType")),
        notes=clean_optional_text(source.get("notes")),
        investment_amount_usd=clean_number(_field(source, "investmentAmountUsd")),
    )


def convert_raw_extraction_action(raw_action: Any, index: int) -> Optional[NarrativeAction]:
    """One raw extraction item -> a typed action, or None when unusable."""
    source = object_like(raw_action)
    kind = parse_action_kind(source.get("kind"))
    if kind is None:
        if not is_company_health_system_link_kind(source.get("kind")):
            return None
        try:
            return _convert_company_health_system_link(source, index)
        except ValidationError:
            return None

    rationale = clean_optional_text(source.get("rationale"))
    confidence = clean_confidence(source.get("confidence"))

    try:
        if kind == ActionKind.CREATE_ENTITY:
            return _convert_create(source, index, rationale, confidence)
        if kind == ActionKind.UPDATE_ENTITY:
            return _convert_update(source, index, rationale, confidence)
        if kind == ActionKind.ADD_CONTACT:
            return _convert_contact(source, index, rationale, confidence)
        if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
            return _convert_link(source, index, rationale, confidence)
    except ValidationError:
        return None
    raise ValueError(f"Unhandled action kind: {kind}")
