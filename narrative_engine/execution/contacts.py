"""
Contact resolution: reuse a shared contact record when the narrative names
someone already in the store, otherwise create one.

Behavioral Contract:
- Identity first: a normalized LinkedIn URL, then a valid e-mail address
- Then a nickname-aware name score with a small title bonus; a score below
  0.75 never reuses a record
- A reused contact only gains fields it was missing; nothing is overwritten
- Callers run this inside the same store transaction as the parent link
"""

import re
from typing import Dict, List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel

from narrative_engine.errors import ActionExecutionError
from narrative_engine.models.actions import NarrativeContactPayload
from narrative_engine.models.records import Contact, ContactLink, ContactRoleType, EntityType
from narrative_engine.store.entity_store import EntityStore

NAME_MATCH_MIN_SCORE = 0.75
NAME_POOL_LIMIT = 50

NICKNAME_GROUPS = {
    "william": ["bill", "billy", "will", "willy", "liam"],
    "robert": ["bob", "bobby", "rob", "robbie"],
    "richard": ["rick", "ricky", "rich", "dick"],
    "margaret": ["maggie", "meg", "peggy"],
    "elizabeth": ["liz", "beth", "lizzie", "eliza"],
    "james": ["jim", "jimmy"],
    "joseph": ["joe", "joey"],
    "michael": ["mike", "mikey"],
    "andrew": ["andy", "drew"],
    "katherine": ["kate", "katie", "kathy", "kat"],
    "christopher": ["chris"],
    "daniel": ["dan", "danny"],
    "anthony": ["tony"],
    "steven": ["steve"],
    "thomas": ["tom", "tommy"],
    "alexander": ["alex", "xander"],
    "john": ["johnny", "jack"],
    "edward": ["ed", "eddie", "ted", "teddy"],
}

_CANONICAL_FIRST_NAMES: Dict[str, str] = {}
for _canonical, _aliases in NICKNAME_GROUPS.items():
    _CANONICAL_FIRST_NAMES[_canonical] = _canonical
    for _alias in _aliases:
        _CANONICAL_FIRST_NAMES[_alias] = _canonical

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_COMPARISON_NOISE = re.compile(r"[^a-z0-9\s'-]")


class ParsedName(BaseModel):
    full: str
    first: str
    last: str
    canonical_first: str


class ContactResolution(BaseModel):
    contact: Contact
    matched_by: str             # linkedin | email | name | created
    confidence: float
    was_created: bool


def _trim(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def normalize_for_comparison(value: Optional[str]) -> str:
    lowered = _COMPARISON_NOISE.sub(" ", (value or "").lower())
    return " ".join(lowered.split())


def normalize_email(value: Optional[str]) -> Optional[str]:
    normalized = (value or "").strip().lower()
    if not normalized or not _EMAIL.match(normalized):
        return None
    return normalized


def normalize_linkedin_url(value: Optional[str]) -> Optional[str]:
    trimmed = (value or "").strip()
    if not trimmed:
        return None
    with_scheme = trimmed if re.match(r"^https?://", trimmed, re.IGNORECASE) else f"https://{trimmed}"
    try:
        parts = urlsplit(with_scheme)
    except ValueError:
        return trimmed.lower().rstrip("/")
    host = (parts.hostname or "").lower()
    if not host:
        return trimmed.lower().rstrip("/")
    host = re.sub(r"^www\.", "", host)
    return f"https://{host}{parts.path.rstrip('/')}"


def parse_name(value: str) -> ParsedName:
    full = normalize_for_comparison(value)
    parts = full.split()
    first = parts[0] if parts else ""
    last = parts[-1] if len(parts) > 1 else ""
    return ParsedName(
        full=full,
        first=first,
        last=last,
        canonical_first=_CANONICAL_FIRST_NAMES.get(first, first),
    )


def score_contact_name(candidate: ParsedName, existing_name: Optional[str]) -> float:
    if not existing_name:
        return 0.0
    existing = parse_name(existing_name)
    if not candidate.full or not existing.full:
        return 0.0
    if candidate.full == existing.full:
        return 0.95

    last_matches = bool(candidate.last) and candidate.last == existing.last
    first_matches = bool(candidate.first) and candidate.first == existing.first
    canonical_matches = bool(candidate.canonical_first) and candidate.canonical_first == existing.canonical_first
    initial_matches = bool(candidate.first and existing.first) and candidate.first[0] == existing.first[0]

    if last_matches and first_matches:
        return 0.93
    if last_matches and canonical_matches:
        return 0.88
    if last_matches and initial_matches:
        return 0.8
    if canonical_matches and candidate.last and not existing.last:
        return 0.74
    if canonical_matches:
        return 0.7
    return 0.0


def score_title_match(candidate_title: Optional[str], existing_title: Optional[str]) -> float:
    a = normalize_for_comparison(candidate_title)
    b = normalize_for_comparison(existing_title)
    if not a or not b:
        return 0.0
    if a == b:
        return 0.08
    tokens_a, tokens_b = set(a.split()), set(b.split())
    overlap = len(tokens_a & tokens_b)
    return 0.05 if overlap / max(len(tokens_a), len(tokens_b)) >= 0.5 else 0.0


def _find_by_name(store: EntityStore, name: str, title: Optional[str]) -> Optional[ContactResolution]:
    parsed = parse_name(name)
    if not parsed.full:
        return None

    fragments: List[str] = [name]
    if parsed.last:
        fragments.append(parsed.last)
    fragments.append(parsed.first)
    pool = store.find_contacts_by_name(fragments, limit=NAME_POOL_LIMIT)

    best: Optional[Contact] = None
    best_score = 0.0
    for candidate in pool:
        name_score = score_contact_name(parsed, candidate.name)
        if name_score <= 0:
            continue
        score = name_score + score_title_match(title, candidate.title)
        if best is None or score > best_score:
            best, best_score = candidate, score

    if best is None or best_score < NAME_MATCH_MIN_SCORE:
        return None
    return ContactResolution(
        contact=best,
        matched_by="name",
        confidence=min(0.95, round(best_score, 2)),
        was_created=False,
    )


def _fill_missing_fields(store: EntityStore, contact: Contact, incoming: dict) -> Contact:
    patch = {
        field: incoming[field]
        for field in ("title", "email", "phone", "linkedin_url")
        if not getattr(contact, field) and incoming.get(field)
    }
    if not patch:
        return contact
    return store.update_contact(contact.id, patch)


def resolve_or_create_contact(store: EntityStore, payload: NarrativeContactPayload) -> ContactResolution:
    name = _trim(payload.name)
    if not name:
        raise ActionExecutionError("Contact name is required.")

    incoming = {
        "name": name,
        "title": _trim(payload.title),
        "email": normalize_email(payload.email),
        "phone": _trim(payload.phone),
        "linkedin_url": normalize_linkedin_url(payload.linkedin_url),
    }

    identity = None
    if incoming["linkedin_url"]:
        found = store.find_contact_by_linkedin(incoming["linkedin_url"])
        if found:
            identity = ContactResolution(contact=found, matched_by="linkedin", confidence=0.99, was_created=False)
    if identity is None and incoming["email"]:
        found = store.find_contact_by_email(incoming["email"])
        if found:
            identity = ContactResolution(contact=found, matched_by="email", confidence=0.99, was_created=False)

    resolution = identity or _find_by_name(store, name, incoming["title"])
    if resolution is not None:
        contact = _fill_missing_fields(store, resolution.contact, incoming)
        return resolution.model_copy(update={"contact": contact})

    contact = store.create_contact(incoming)
    return ContactResolution(contact=contact, matched_by="created", confidence=1.0, was_created=True)


def link_contact_to_parent(
    store: EntityStore,
    payload: NarrativeContactPayload,
    parent_type: EntityType,
    parent_id: str,
    role_type: ContactRoleType,
) -> ContactLink:
    """Resolve the contact and upsert its parent link as one transaction."""
    with store.transaction():
        resolution = resolve_or_create_contact(store, payload)
        return store.upsert_contact_link(
            contact_id=resolution.contact.id,
            parent_type=parent_type,
            parent_id=parent_id,
            role_type=role_type,
            title=_trim(payload.relationship_title) or _trim(payload.title),
        )
