from __future__ import annotations

from typing import Any, Literal, Protocol

from llm_orchestrator.models.events import LlmCallEvent
from llm_orchestrator.models.research import LlmProvider, Research
from llm_orchestrator.models.results import (
    PublishError,
    RepositoryError,
    Result,
    SynthesizerError,
)

SortOrder = Literal["newest", "oldest"]


class ResearchRepository(Protocol):
    """Persistence for research records.

    ``update`` and ``update_llm_result`` take snake_case partial updates in
    which ``None`` clears a field.
    """

    async def save(self, research: Research) -> Result[Research, RepositoryError]: ...

    async def find_by_id(self, research_id: str) -> Result[Research | None, RepositoryError]: ...

    async def find_by_user_id(
        self,
        user_id: str,
        *,
        offset: int = 0,
        limit: int = 50,
        sort: SortOrder = "newest",
    ) -> Result[list[Research], RepositoryError]: ...

    async def update(
        self, research_id: str, fields: dict[str, Any]
    ) -> Result[None, RepositoryError]: ...

    async def update_llm_result(
        self, research_id: str, provider: LlmProvider, fields: dict[str, Any]
    ) -> Result[None, RepositoryError]: ...

    async def delete(self, research_id: str) -> Result[None, RepositoryError]: ...


class LlmCallPublisher(Protocol):
    async def publish_llm_call(self, event: LlmCallEvent) -> Result[None, PublishError]: ...


class Synthesizer(Protocol):
    async def synthesize(
        self, prompt: str, reports: list[dict[str, str]]
    ) -> Result[str, SynthesizerError]: ...
