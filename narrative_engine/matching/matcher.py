"""
Entity Matcher — scores existing store records against a narrative name.

Behavioral Contract:
- Queries the store with both the raw and filler-stripped forms of the name
- Returns matches sorted by descending confidence, capped at the match limit
- An empty name or an empty store yields [], never an error
"""

from typing import List, Optional, Tuple

from narrative_engine.matching.normalizer import (
    clean_entity_name,
    clean_name_fragment,
    normalize_for_lookup,
)
from narrative_engine.models.actions import NarrativeEntityMatch
from narrative_engine.models.records import EntityType
from narrative_engine.store.entity_store import EntityStore

AUTO_MATCH_CONFIDENCE_THRESHOLD = 0.8
DEFAULT_MATCH_LIMIT = 8


def score_name_match(query: str, candidate: str) -> Tuple[float, str]:
    """Heuristic name similarity. Returns (score, reason)."""
    normalized_query = normalize_for_lookup(query)
    normalized_candidate = normalize_for_lookup(candidate)

    if not normalized_query or not normalized_candidate:
        return 0.0, "No comparable name"

    if normalized_query == normalized_candidate:
        return 0.98, "Exact name match"

    if (
        normalized_candidate.startswith(normalized_query)
        or normalized_query.startswith(normalized_candidate)
    ):
        return 0.86, "Prefix name match"

    if normalized_query in normalized_candidate or normalized_candidate in normalized_query:
        return 0.8, "Substring name match"

    query_tokens = set(normalized_query.split())
    candidate_tokens = set(normalized_candidate.split())
    overlap = len(query_tokens & candidate_tokens)
    ratio = overlap / max(len(query_tokens), len(candidate_tokens), 1)

    if ratio >= 0.75:
        return 0.74, "High token overlap"
    if ratio >= 0.5:
        return 0.64, "Moderate token overlap"
    return 0.52, "Low confidence name match"


def is_high_confidence(match: Optional[NarrativeEntityMatch]) -> bool:
    """True when a match clears the auto-select threshold."""
    return match is not None and match.confidence >= AUTO_MATCH_CONFIDENCE_THRESHOLD


def is_below_auto_threshold(match: Optional[NarrativeEntityMatch]) -> bool:
    return match is not None and not is_high_confidence(match)


def format_confidence_percent(confidence: Optional[float]) -> str:
    if confidence is None:
        return ""
    return f"{round(confidence * 100)}%"


class EntityMatcher:
    """Looks up plausible existing records for a name and entity kind."""

    def __init__(self, store: EntityStore, limit: int = DEFAULT_MATCH_LIMIT):
        self.store = store
        self.limit = limit

    def fetch_entity_matches(
        self, entity_type: EntityType, name: str
    ) -> List[NarrativeEntityMatch]:
        clean_name = clean_name_fragment(name)
        if not clean_name:
            return []

        normalized_name = clean_entity_name(clean_name, entity_type)
        query_names = list(dict.fromkeys(n for n in (clean_name, normalized_name) if n))
        score_name = normalized_name or clean_name

        candidates = self.store.find_many(entity_type, query_names, limit=self.limit)

        matches = []
        for candidate in candidates:
            score, reason = score_name_match(score_name, candidate.name)
            matches.append(NarrativeEntityMatch(
                id=candidate.id,
                entity_type=entity_type,
                name=candidate.name,
                website=candidate.website,
                headquarters_city=candidate.headquarters_city,
                headquarters_state=candidate.headquarters_state,
                headquarters_country=candidate.headquarters_country,
                confidence=score,
                reason=reason,
            ))

        # sorted() is stable, so equal scores keep store order
        return sorted(matches, key=lambda m: m.confidence, reverse=True)

    def resolve_health_system_id(self, name: str) -> Optional[str]:
        """Id of the top health-system match, only when it clears the threshold."""
        clean_name = clean_name_fragment(name)
        if not clean_name:
            return None

        matches = self.fetch_entity_matches(EntityType.HEALTH_SYSTEM, clean_name)
        top = matches[0] if matches else None
        return top.id if is_high_confidence(top) else None
