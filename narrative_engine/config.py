"""Engine configuration, read from the environment with pydantic-settings."""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

DEFAULT_AGENT_MODEL = "gpt-4.1-mini"


class NarrativeEngineConfig(BaseSettings):
    """Runtime configuration for the narrative engine."""

    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    agent_model: str = Field(
        default=DEFAULT_AGENT_MODEL,
        validation_alias=AliasChoices("OPENAI_AGENT_MODEL", "OPENAI_MODEL"),
    )
    llm_timeout_seconds: float = Field(default=60.0, validation_alias="NARRATIVE_LLM_TIMEOUT_SECONDS")
    database_path: str = Field(default=":memory:", validation_alias="NARRATIVE_DATABASE_PATH")
    match_limit: int = Field(default=8, ge=1, validation_alias="NARRATIVE_MATCH_LIMIT")
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }
