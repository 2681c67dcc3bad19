"""
Plan Builder — the narrative-to-plan pipeline.

  extract -> introduction heuristics -> dedupe -> hydrate -> gate -> plan

Behavioral Contract:
- build_plan never raises for well-typed input, including an empty narrative
  or a failing LLM collaborator
- A lock phrase in the narrative bypasses the clarification gate entirely
- Otherwise actions plus at least one open question yield CLARIFICATION,
  with the questions as the plan warnings
- PLAN-phase warnings are deduplicated and operational only
- Zero actions is a PLAN with a warning, not an error
"""

import logging
from typing import List, Optional

from narrative_engine.extraction.digest import MODEL_NARRATIVE, build_model_digest
from narrative_engine.extraction.extractor import ActionExtractor, ExtractionResult
from narrative_engine.extraction.parsing import clean_text
from narrative_engine.matching.normalizer import normalize_for_lookup
from narrative_engine.models.plan import NarrativePlan, PlanPhase
from narrative_engine.strategy.clarification import (
    build_clarification_question_queue,
    build_clarification_summary,
    is_operational_warning,
    summarize_action_requirement,
)
from narrative_engine.strategy.dedupe import dedupe_actions
from narrative_engine.strategy.heuristics import apply_introduction_heuristics
from narrative_engine.strategy.hydrator import ActionHydrator

logger = logging.getLogger(__name__)

REQUIREMENTS_LOCK_PHRASES = [
    "build execution plan",
    "create execution plan",
    "draft execution plan",
    "generate execution plan",
    "finalize requirements",
    "requirements are final",
    "requirements confirmed",
    "proceed with plan",
    "go ahead with plan",
    "ready for execution plan",
    "plan is approved",
]

NO_ACTIONS_WARNING = "No actionable items were extracted. You can edit the narrative and try again."
CANDIDATE_PREVIEW_LIMIT = 5


def has_requirements_lock_signal(narrative: str) -> bool:
    normalized = normalize_for_lookup(narrative)
    if not normalized:
        return False
    return any(normalize_for_lookup(phrase) in normalized for phrase in REQUIREMENTS_LOCK_PHRASES)


def _plan_warnings(warnings: List[str]) -> List[str]:
    cleaned = [clean_text(w) for w in warnings]
    unique = list(dict.fromkeys(w for w in cleaned if w))
    return [w for w in unique if is_operational_warning(w)]


class NarrativePlanner:
    """
    Turns one narrative turn into a NarrativePlan.
    Holds no state between turns.
    """

    def __init__(
        self,
        extractor: ActionExtractor,
        hydrator: ActionHydrator,
        model_digest: Optional[str] = None,
        model_narrative: str = MODEL_NARRATIVE,
    ):
        self.extractor = extractor
        self.hydrator = hydrator
        self.model_digest = model_digest or build_model_digest()
        self.model_narrative = model_narrative

    async def build_plan(self, narrative: str) -> NarrativePlan:
        narrative = narrative or ""
        if narrative.strip():
            extraction = await self.extractor.extract(narrative, self.model_digest, self.model_narrative)
        else:
            extraction = ExtractionResult()

        heuristic_actions, heuristic_warnings = apply_introduction_heuristics(narrative, extraction.actions)
        deduped = dedupe_actions(heuristic_actions)
        locked = has_requirements_lock_signal(narrative)
        hydrated = await self.hydrator.hydrate_all(deduped)

        warnings = [*extraction.warnings, *heuristic_warnings]
        if len(deduped) < len(heuristic_actions):
            warnings.append(
                f"Consolidated duplicate actions ({len(heuristic_actions)} extracted -> {len(deduped)} unique)."
            )

        questions: List[str] = []
        if not locked and hydrated:
            questions = build_clarification_question_queue(hydrated, extraction.warnings)

        if questions:
            logger.info(
                "Plan needs clarification: %d question(s) across %d action(s)",
                len(questions), len(hydrated),
            )
            preview = " ".join(
                summarize_action_requirement(a) for a in hydrated[:CANDIDATE_PREVIEW_LIMIT]
            )
            summary = build_clarification_summary(extraction.summary, hydrated)
            if preview:
                summary = f"{summary} Candidate requirements so far: {preview}"
            return NarrativePlan(
                narrative=narrative,
                phase=PlanPhase.CLARIFICATION,
                summary=summary,
                model_digest=self.model_digest,
                warnings=questions,
                actions=hydrated,
            )

        if not hydrated:
            warnings.append(NO_ACTIONS_WARNING)

        count = len(hydrated)
        summary = extraction.summary or (
            f"Extracted {count} action{'' if count == 1 else 's'}." if count else "No actions extracted."
        )
        logger.info("Plan ready: %d action(s), locked=%s", count, locked)
        return NarrativePlan(
            narrative=narrative,
            phase=PlanPhase.PLAN,
            summary=summary,
            model_digest=self.model_digest,
            warnings=_plan_warnings(warnings),
            actions=hydrated,
        )
