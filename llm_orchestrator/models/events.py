from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from llm_orchestrator.models.research import LlmProvider


class LlmCallEvent(BaseModel):
    """Dispatch request for one provider call, consumed by the LLM workers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: Literal["llm.call"] = "llm.call"
    research_id: str
    user_id: str
    provider: LlmProvider
    prompt: str

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def encode(self) -> bytes:
        return json.dumps(self.to_payload()).encode("utf-8")
