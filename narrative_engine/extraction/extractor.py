"""
Action Extractor — one LLM call per narrative turn, parsed permissively.

Behavioral Contract:
- Never raises: a missing client, a failed call or an unparseable reply
  degrades to zero actions plus an explanatory warning
- Raw actions that cannot be converted are dropped without a warning
"""

import logging
import re
from typing import List, Optional

from pydantic import BaseModel

from narrative_engine.extraction.llm import LlmClient
from narrative_engine.extraction.parsing import (
    clean_text,
    convert_raw_extraction_action,
    extract_json_payload,
)
from narrative_engine.extraction.prompts import EXTRACTION_SCHEMA, SYSTEM_PROMPT, build_user_prompt
from narrative_engine.models.actions import NarrativeAction

logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 260

MISSING_KEY_SUMMARY = "OpenAI API key is missing, so no AI extraction ran."
MISSING_KEY_WARNING = (
    "Set OPENAI_API_KEY to enable narrative extraction and web-assisted disambiguation."
)
FAILED_SUMMARY = "AI extraction failed for this narrative."
FAILED_WARNING = "The AI extraction call failed. Check OpenAI credentials and try again."
UNPARSEABLE_SUMMARY = "AI extraction returned a reply that could not be read."
UNPARSEABLE_WARNING = (
    "The AI extraction reply was not a JSON object with an actions list. Try rephrasing the narrative."
)


class ExtractionResult(BaseModel):
    summary: str = ""
    actions: List[NarrativeAction] = []
    warnings: List[str] = []


def safe_text_for_summary(value: str) -> str:
    cleaned = re.sub(r"\s+", " ", value or "").strip()
    if len(cleaned) <= SUMMARY_MAX_LENGTH:
        return cleaned
    return f"{cleaned[:SUMMARY_MAX_LENGTH - 3].rstrip()}..."


class ActionExtractor:
    """Turns narrative text into typed actions through the LLM collaborator."""

    def __init__(self, llm_client: Optional[LlmClient]):
        self.llm_client = llm_client

    async def extract(
        self, narrative: str, model_digest: str, model_narrative: str
    ) -> ExtractionResult:
        if self.llm_client is None:
            logger.warning("No LLM client configured; skipping narrative extraction")
            return ExtractionResult(summary=MISSING_KEY_SUMMARY, warnings=[MISSING_KEY_WARNING])

        try:
            raw = await self.llm_client.complete(
                SYSTEM_PROMPT,
                build_user_prompt(narrative, model_digest, model_narrative),
                EXTRACTION_SCHEMA,
            )
        except Exception:
            logger.warning("Narrative extraction call failed", exc_info=True)
            return ExtractionResult(summary=FAILED_SUMMARY, warnings=[FAILED_WARNING])

        payload = extract_json_payload(raw or "")
        raw_actions = payload.get("actions")
        if not isinstance(raw_actions, list):
            logger.warning("Narrative extraction reply had no actions list")
            return ExtractionResult(summary=UNPARSEABLE_SUMMARY, warnings=[UNPARSEABLE_WARNING])

        summary = safe_text_for_summary(clean_text(payload.get("summary")))

        raw_warnings = payload.get("warnings")
        warnings = [clean_text(w) for w in raw_warnings] if isinstance(raw_warnings, list) else []

        actions = []
        for index, raw_action in enumerate(raw_actions):
            action = convert_raw_extraction_action(raw_action, index)
            if action is not None:
                actions.append(action)

        logger.info(
            "Extracted %d of %d raw actions", len(actions), len(raw_actions)
        )
        return ExtractionResult(
            summary=summary,
            actions=actions,
            warnings=[w for w in warnings if w],
        )
