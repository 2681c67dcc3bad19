"""
Web Candidate Fetcher — one interface over the per-kind web search services.

Behavioral Contract:
- Delegates to the search service registered for the entity kind
- Normalizes each service's raw candidates into NarrativeWebCandidate
- A failing or missing service degrades to [] and is logged, never raised
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol

from pydantic import ValidationError

from narrative_engine.models.actions import NarrativeWebCandidate
from narrative_engine.models.records import EntityType

logger = logging.getLogger(__name__)

_TEXT_FIELDS = {
    "website": ("website",),
    "headquarters_city": ("headquartersCity", "headquarters_city"),
    "headquarters_state": ("headquartersState", "headquarters_state"),
    "headquarters_country": ("headquartersCountry", "headquarters_country"),
    "summary": ("summary",),
}


class SearchService(Protocol):
    """Protocol for a kind-specific web search collaborator."""

    async def search(self, query: str) -> Mapping[str, Any]: ...


def _first_text(raw: Mapping[str, Any], keys) -> str:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def normalize_raw_candidate(raw: Mapping[str, Any]) -> Optional[NarrativeWebCandidate]:
    """Map one raw search hit onto the common candidate shape."""
    name = _first_text(raw, ("name",))
    if not name:
        return None

    fields = {field: _first_text(raw, keys) for field, keys in _TEXT_FIELDS.items()}
    source_urls = raw.get("sourceUrls") or raw.get("source_urls") or []
    if not isinstance(source_urls, list):
        source_urls = []
    try:
        return NarrativeWebCandidate(
            name=name,
            source_urls=[url for url in source_urls if isinstance(url, str)],
            **fields,
        )
    except ValidationError:
        return None


class WebCandidateFetcher:
    """Routes a web lookup to the search service for an entity kind."""

    def __init__(self, services: Optional[Dict[EntityType, SearchService]] = None):
        self.services: Dict[EntityType, SearchService] = dict(services or {})

    async def fetch_web_candidates(
        self, entity_type: EntityType, query: str
    ) -> List[NarrativeWebCandidate]:
        search_term = (query or "").strip()
        if not search_term:
            return []

        service = self.services.get(entity_type)
        if service is None:
            return []

        try:
            result = await service.search(search_term)
        except Exception:
            logger.warning(
                "Web candidate search failed for %s %r",
                entity_type.value, search_term, exc_info=True,
            )
            return []

        if result is None:
            return []
        raw_candidates = result.get("candidates", []) if isinstance(result, Mapping) else None
        if not isinstance(raw_candidates, list):
            logger.warning(
                "Web candidate search for %s %r returned an unreadable reply",
                entity_type.value, search_term,
            )
            return []

        candidates = []
        for raw in raw_candidates:
            if not isinstance(raw, Mapping):
                continue
            candidate = normalize_raw_candidate(raw)
            if candidate is not None:
                candidates.append(candidate)
        return candidates
