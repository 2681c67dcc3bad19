"""
Narrative Engine API — FastAPI endpoints.

Exposes the engine over HTTP for:
- Building a reviewable plan from narrative text
- Executing a reviewed plan
- Inspecting store records and queued research jobs
"""

import logging
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from narrative_engine.config import NarrativeEngineConfig
from narrative_engine.engine import NarrativeEngine
from narrative_engine.extraction.llm import LlmClient
from narrative_engine.logging import setup_logging
from narrative_engine.models.plan import NarrativePlan
from narrative_engine.models.records import EntityType
from narrative_engine.research.web_candidates import SearchService
from narrative_engine.store.entity_store import EntityStore

logger = logging.getLogger(__name__)


# --- Request Models ---

class PlanRequest(BaseModel):
    narrative: str = Field(min_length=15)


class ExecuteRequest(BaseModel):
    plan: NarrativePlan


def _error(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


# --- Application Factory ---

def create_app(
    store: Optional[EntityStore] = None,
    llm_client: Optional[LlmClient] = None,
    search_services: Optional[Dict[EntityType, SearchService]] = None,
    config: Optional[NarrativeEngineConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    config = config or NarrativeEngineConfig()
    setup_logging(config.log_level)

    app = FastAPI(
        title="Narrative Engine API",
        description="Narrative-to-action resolution for the venture CRM",
        version="0.1.0",
    )

    engine = NarrativeEngine.from_config(
        config, store=store, llm_client=llm_client, search_services=search_services
    )
    app.state.config = config
    app.state.engine = engine
    app.state.store = engine.store

    # === NARRATIVE AGENT ===

    @app.post("/narrative-agent/plan")
    async def build_plan(req: PlanRequest):
        """Turn narrative text into a plan for review."""
        try:
            plan = await engine.build_narrative_plan(req.narrative)
        except Exception as e:
            logger.exception("Plan build failed")
            return _error(str(e) or "Failed to build narrative plan")
        return {"plan": plan.model_dump(mode="json", by_alias=True)}

    @app.post("/narrative-agent/execute")
    def execute_plan(req: ExecuteRequest):
        """Execute a reviewed plan."""
        try:
            report = engine.execute_narrative_plan(req.plan)
        except Exception as e:
            logger.exception("Plan execution failed")
            return _error(str(e) or "Failed to execute narrative plan")
        return report.model_dump(mode="json", by_alias=True)

    # === STORE INSPECTION ===

    @app.get("/entities/{entity_type}")
    def list_entities(entity_type: EntityType):
        records = engine.store.list_entities(entity_type)
        return [r.model_dump(mode="json", by_alias=True) for r in records]

    @app.get("/entities/{entity_type}/{entity_id}")
    def get_entity(entity_type: EntityType, entity_id: str):
        record = engine.store.find_unique(entity_type, entity_id)
        if record is None:
            raise HTTPException(404, "Entity not found")
        return record.model_dump(mode="json", by_alias=True)

    @app.get("/research-jobs")
    def list_research_jobs():
        return [j.model_dump(mode="json", by_alias=True) for j in engine.store.list_research_jobs()]

    @app.get("/health")
    def health():
        return {"status": "ok", "extraction_enabled": engine.planner.extractor.llm_client is not None}

    return app


# Default application instance
app = create_app()
