"""
Narrative Engine — the two entry points callers use.

  build_narrative_plan(narrative) -> NarrativePlan
  execute_narrative_plan(plan)    -> NarrativeExecutionReport

Behavioral Contract:
- Neither entry point raises for well-typed input; failures are captured
  in the returned plan or report
- No state is kept between turns; plans round-trip through the caller
"""

from typing import Dict, Optional

from narrative_engine.config import NarrativeEngineConfig
from narrative_engine.execution.executors import ActionExecutor
from narrative_engine.execution.scheduler import ExecutionScheduler
from narrative_engine.extraction.extractor import ActionExtractor
from narrative_engine.extraction.llm import LlmClient, OpenAILlmClient
from narrative_engine.matching.matcher import EntityMatcher
from narrative_engine.models.plan import NarrativeExecutionReport, NarrativePlan
from narrative_engine.models.records import EntityType
from narrative_engine.research.queue import ResearchQueue
from narrative_engine.research.web_candidates import SearchService, WebCandidateFetcher
from narrative_engine.store.entity_store import EntityStore
from narrative_engine.strategy.hydrator import ActionHydrator
from narrative_engine.strategy.planner import NarrativePlanner


class NarrativeEngine:
    """Wires the planner and the scheduler around one entity store."""

    def __init__(
        self,
        store: EntityStore,
        llm_client: Optional[LlmClient] = None,
        search_services: Optional[Dict[EntityType, SearchService]] = None,
        match_limit: int = 8,
    ):
        self.store = store
        matcher = EntityMatcher(store, limit=match_limit)
        self.planner = NarrativePlanner(
            extractor=ActionExtractor(llm_client),
            hydrator=ActionHydrator(matcher, WebCandidateFetcher(search_services)),
        )
        self.scheduler = ExecutionScheduler(
            ActionExecutor(store, matcher=matcher, research_queue=ResearchQueue(store))
        )

    @classmethod
    def from_config(
        cls,
        config: NarrativeEngineConfig,
        store: Optional[EntityStore] = None,
        llm_client: Optional[LlmClient] = None,
        search_services: Optional[Dict[EntityType, SearchService]] = None,
    ) -> "NarrativeEngine":
        """Build an engine; an OpenAI client is created only when a key is configured."""
        if llm_client is None and config.openai_api_key:
            llm_client = OpenAILlmClient(
                api_key=config.openai_api_key,
                model_name=config.agent_model,
                timeout=config.llm_timeout_seconds,
            )
        return cls(
            store=store or EntityStore(config.database_path),
            llm_client=llm_client,
            search_services=search_services,
            match_limit=config.match_limit,
        )

    async def build_narrative_plan(self, narrative: str) -> NarrativePlan:
        return await self.planner.build_plan(narrative)

    def execute_narrative_plan(self, plan: NarrativePlan) -> NarrativeExecutionReport:
        return self.scheduler.execute_plan(plan)
