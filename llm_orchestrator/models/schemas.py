from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from llm_orchestrator.models.research import LlmProvider, Research


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---


class ResearchSubmitRequest(_CamelModel):
    prompt: str = Field(..., min_length=1)
    selected_llms: list[LlmProvider] = Field(..., min_length=1)
    synthesis_llm: LlmProvider | None = None
    title: str | None = None
    skip_synthesis: bool = False


# --- Responses ---


class ResearchSubmitResponse(_CamelModel):
    id: str


class ResearchListResponse(_CamelModel):
    items: list[Research]
    page: int
    limit: int
    has_more: bool


class RetryResponse(_CamelModel):
    action: Literal["retrying_llms", "synthesis_completed", "already_completed", "synthesis_skipped"]
    message: str
    retried_providers: list[LlmProvider] | None = None
