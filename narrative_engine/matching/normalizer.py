"""
Text Normalizer — canonical names and comparison keys for narrative fragments.

Behavioral Contract:
- clean_entity_name strips quotes, punctuation and filler prefixes
  ("a company called", "co-investor named", "the health system").
- normalize_for_lookup is a comparison key only; it is never displayed.
- Both are idempotent: f(f(x)) == f(x).
"""

import re
from typing import Optional

from narrative_engine.models.records import EntityType

_EDGE_CHARS = "\\s\"'`\u201c\u201d\u2018\u2019(),.;:!?-"
_LEADING_NOISE = re.compile(f"^[{_EDGE_CHARS}]+")
_TRAILING_NOISE = re.compile(f"[{_EDGE_CHARS}]+$")
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

_ENTITY_WORD = r"(?:company|co[\s-]?investor|health\s*system|healthcare\s*system)"

_GENERIC_FILLERS = [
    re.compile(rf"^(?:a|an|the)\s+{_ENTITY_WORD}\s+(?:called|named)\s+", re.IGNORECASE),
    re.compile(rf"^{_ENTITY_WORD}\s+(?:called|named)\s+", re.IGNORECASE),
    re.compile(r"^(?:called|named)\s+", re.IGNORECASE),
]

_TYPED_FILLERS = {
    EntityType.COMPANY: [
        re.compile(r"^(?:a|an|the)\s+company\s+", re.IGNORECASE),
        re.compile(r"^company\s+", re.IGNORECASE),
    ],
    EntityType.CO_INVESTOR: [
        re.compile(r"^(?:a|an|the)\s+co[\s-]?investor\s+", re.IGNORECASE),
        re.compile(r"^co[\s-]?investor\s+", re.IGNORECASE),
        re.compile(r"^(?:a|an|the)\s+investor\s+", re.IGNORECASE),
        re.compile(r"^investor\s+", re.IGNORECASE),
    ],
    EntityType.HEALTH_SYSTEM: [
        re.compile(r"^(?:a|an|the)\s+health\s*system\s+", re.IGNORECASE),
        re.compile(r"^(?:a|an|the)\s+healthcare\s*system\s+", re.IGNORECASE),
    ],
}

_HEALTH_SYSTEM_SUFFIX = re.compile(r"\b(?:health\s*system|healthcare\s*system)\b$", re.IGNORECASE)

CO_INVESTOR_SIGNALS = re.compile(
    r"\b(innovation fund|fund|ventures?|venture arm|venture fund|capital|vc|investor|investments?)\b"
)
# "health" on its own counts: "Acme Health" reads as a provider system.
HEALTH_SYSTEM_SIGNALS = re.compile(
    r"\b(health system|healthcare system|health|healthcare|hospitals?|medical center|medical|clinics?)\b"
)
_FUND_WORDS = re.compile(
    r"\b(innovation\s+fund|innovation|ventures?|venture\s+fund|venture\s+arm|capital|vc|fund"
    r"|investments?|investor|strategic\s+investments?)\b",
    re.IGNORECASE,
)


def normalize_for_lookup(value: Optional[str]) -> str:
    """Lowercase, alphanumerics only, single-spaced."""
    if not value:
        return ""
    lowered = _NON_ALNUM.sub(" ", value.strip().lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def clean_name_fragment(value: Optional[str]) -> str:
    """Trim surrounding quotes/punctuation and collapse whitespace."""
    if not value:
        return ""
    value = _LEADING_NOISE.sub("", value)
    value = _TRAILING_NOISE.sub("", value)
    return _WHITESPACE.sub(" ", value).strip()


def _strip_fillers_once(value: str, entity_type: Optional[EntityType]) -> str:
    for pattern in _GENERIC_FILLERS:
        value = pattern.sub("", value)
    for pattern in _TYPED_FILLERS.get(entity_type, []):
        value = pattern.sub("", value)
    return clean_name_fragment(value)


def clean_entity_name(value: Optional[str], entity_type: Optional[EntityType] = None) -> str:
    """
    Display-ready entity name with filler prefixes removed.

    Fillers are stripped repeatedly until the name stops changing. If
    stripping would leave nothing, the last non-empty form is kept.
    """
    current = clean_name_fragment(value)
    while current:
        stripped = _strip_fillers_once(current, entity_type)
        if not stripped or stripped == current:
            break
        current = stripped
    return current


def normalize_entity_name_for_lookup(
    value: Optional[str], entity_type: Optional[EntityType] = None
) -> str:
    """
    Comparison key for an entity name. Health systems also lose a trailing
    generic "health system" so "Mercy" and "Mercy Health System" collide.
    """
    cleaned = clean_entity_name(value, entity_type)
    if not cleaned:
        return ""

    if entity_type == EntityType.HEALTH_SYSTEM:
        without_suffix = clean_name_fragment(_HEALTH_SYSTEM_SUFFIX.sub("", cleaned))
        if without_suffix:
            return normalize_for_lookup(without_suffix)

    return normalize_for_lookup(cleaned)


def has_co_investor_signals(normalized_value: str) -> bool:
    return bool(CO_INVESTOR_SIGNALS.search(normalized_value))


def has_health_system_signals(normalized_value: str) -> bool:
    return bool(HEALTH_SYSTEM_SIGNALS.search(normalized_value))


def looks_like_health_system_name(value: str) -> bool:
    """Health-system vocabulary present and no fund/investor vocabulary."""
    normalized = normalize_for_lookup(value)
    return bool(
        normalized
        and has_health_system_signals(normalized)
        and not has_co_investor_signals(normalized)
    )


def infer_introducer_type(introducer_name: str) -> EntityType:
    """
    Classify who made an introduction. Co-investor is the default;
    health system wins only when no investor vocabulary is present.
    """
    if looks_like_health_system_name(introducer_name):
        return EntityType.HEALTH_SYSTEM
    return EntityType.CO_INVESTOR


def infer_health_system_name_from_introducer(introducer_name: str) -> str:
    """'Mercy Ventures' -> 'Mercy'. The venture arm's parent system name."""
    clean_introducer = re.sub(
        r"^the\s+", "", clean_name_fragment(introducer_name), flags=re.IGNORECASE
    )
    if not clean_introducer:
        return ""

    stripped = _WHITESPACE.sub(" ", _FUND_WORDS.sub(" ", clean_introducer)).strip()
    return (
        clean_entity_name(stripped or clean_introducer, EntityType.HEALTH_SYSTEM)
        or clean_entity_name(clean_introducer, EntityType.HEALTH_SYSTEM)
    )


def entity_type_label(entity_type: EntityType) -> str:
    if entity_type == EntityType.HEALTH_SYSTEM:
        return "health system"
    if entity_type == EntityType.COMPANY:
        return "company"
    return "co-investor"
