"""Research queue: fire-and-forget enrichment jobs for newly created entities."""

import logging
from typing import Optional

from narrative_engine.models.records import EntityType, ResearchJob
from narrative_engine.store.entity_store import EntityStore

logger = logging.getLogger(__name__)


class ResearchQueue:
    """
    Enqueues research jobs in the entity store.
    A failed enqueue is logged and never fails the caller.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def enqueue(self, entity_type: EntityType, entity_id: str) -> Optional[ResearchJob]:
        try:
            job = self.store.enqueue_research_job(entity_type, entity_id)
        except Exception:
            logger.warning(
                "Could not enqueue research for %s %s",
                entity_type.value, entity_id, exc_info=True,
            )
            return None
        logger.info("Queued research job %s for %s %s", job.id, entity_type.value, entity_id)
        return job
