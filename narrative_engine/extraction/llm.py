"""
LLM collaborator: text + JSON schema in, raw response text out.

The extractor owns every JSON-shape concern; clients only move text.
"""

from typing import Any, Dict, Optional, Protocol

from openai import AsyncOpenAI

from narrative_engine.config import DEFAULT_AGENT_MODEL
from narrative_engine.errors import ExtractionError


class LlmClient(Protocol):
    """Protocol for the extraction backend — pluggable for tests."""

    async def complete(
        self, system_prompt: str, user_prompt: str, json_schema: Dict[str, Any]
    ) -> str: ...


class OpenAILlmClient:
    """
    Wraps the OpenAI Responses API with a json_schema text format.
    Any SDK error is re-raised as ExtractionError.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = DEFAULT_AGENT_MODEL,
        timeout: Optional[float] = None,
        schema_name: str = "narrative_actions",
    ):
        self.model_name = model_name
        self.schema_name = schema_name
        client_kwargs: Dict[str, Any] = {"api_key": api_key}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self._client = AsyncOpenAI(**client_kwargs)

    async def complete(
        self, system_prompt: str, user_prompt: str, json_schema: Dict[str, Any]
    ) -> str:
        try:
            resp = await self._client.responses.create(
                model=self.model_name,
                text={
                    "format": {
                        "type": "json_schema",
                        "name": self.schema_name,
                        "schema": json_schema,
                        "strict": False,
                    }
                },
                input=[
                    {"role": "system", "content": [{"type": "input_text", "text": system_prompt}]},
                    {"role": "user", "content": [{"type": "input_text", "text": user_prompt}]},
                ],
            )
        except Exception as e:
            raise ExtractionError(f"LLM request failed: {e}") from e

        text = getattr(resp, "output_text", "") or ""
        return text.strip()
