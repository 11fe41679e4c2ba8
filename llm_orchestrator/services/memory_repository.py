from __future__ import annotations

import copy
from typing import Any

from pydantic import ValidationError

from llm_orchestrator.models.research import (
    LlmProvider,
    LlmResult,
    Research,
    apply_document_update,
    to_document_fields,
)
from llm_orchestrator.models.results import Err, Ok, RepositoryError, Result
from llm_orchestrator.research.ports import SortOrder


class InMemoryResearchRepository:
    """Process-local research store keeping the same documents Postgres would."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    async def save(self, research: Research) -> Result[Research, RepositoryError]:
        self._documents[research.id] = research.to_document()
        return Ok(research)

    async def find_by_id(self, research_id: str) -> Result[Research | None, RepositoryError]:
        document = self._documents.get(research_id)
        if document is None:
            return Ok(None)
        try:
            return Ok(Research.model_validate(copy.deepcopy(document)))
        except ValidationError as exc:
            return Err(RepositoryError("INVALID_DOCUMENT", str(exc)))

    async def find_by_user_id(
        self,
        user_id: str,
        *,
        offset: int = 0,
        limit: int = 50,
        sort: SortOrder = "newest",
    ) -> Result[list[Research], RepositoryError]:
        owned = [d for d in self._documents.values() if d.get("userId") == user_id]
        owned.sort(key=lambda d: d.get("startedAt", ""), reverse=(sort == "newest"))
        try:
            return Ok([Research.model_validate(copy.deepcopy(d)) for d in owned[offset : offset + limit]])
        except ValidationError as exc:
            return Err(RepositoryError("INVALID_DOCUMENT", str(exc)))

    async def update(self, research_id: str, fields: dict[str, Any]) -> Result[None, RepositoryError]:
        document = self._documents.get(research_id)
        if document is None:
            return Err(RepositoryError("NOT_FOUND", f"Research {research_id} not found"))
        apply_document_update(document, to_document_fields(Research, fields))
        return Ok(None)

    async def update_llm_result(
        self, research_id: str, provider: LlmProvider, fields: dict[str, Any]
    ) -> Result[None, RepositoryError]:
        document = self._documents.get(research_id)
        if document is None:
            return Err(RepositoryError("NOT_FOUND", f"Research {research_id} not found"))
        translated = to_document_fields(LlmResult, fields)
        for entry in document.get("llmResults", []):
            if entry.get("provider") == LlmProvider(provider).value:
                apply_document_update(entry, translated)
                return Ok(None)
        return Err(
            RepositoryError("NOT_FOUND", f"No {LlmProvider(provider).value} result on research {research_id}")
        )

    async def delete(self, research_id: str) -> Result[None, RepositoryError]:
        self._documents.pop(research_id, None)
        return Ok(None)
