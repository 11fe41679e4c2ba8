from __future__ import annotations

from llm_orchestrator.config import settings
from llm_orchestrator.llm_client import OpenRouterSynthesizer
from llm_orchestrator.research.ports import LlmCallPublisher, ResearchRepository, Synthesizer
from llm_orchestrator.services.database import PostgresResearchRepository
from llm_orchestrator.services.memory_repository import InMemoryResearchRepository
from llm_orchestrator.services.publisher import HttpLlmCallPublisher, LoggingLlmCallPublisher

_repository: ResearchRepository | None = None
_publisher: LlmCallPublisher | None = None
_synthesizer: Synthesizer | None = None


def get_research_repository() -> ResearchRepository:
    global _repository
    if _repository is None:
        backend = settings.research_backend.lower().strip()
        if backend == "memory":
            _repository = InMemoryResearchRepository()
        elif backend == "postgres":
            _repository = PostgresResearchRepository(settings.database_url)
        else:
            raise ValueError(f"Unsupported RESEARCH_BACKEND: {settings.research_backend}")
    return _repository


def get_llm_call_publisher() -> LlmCallPublisher:
    global _publisher
    if _publisher is None:
        backend = settings.publisher_backend.lower().strip()
        if backend == "log":
            _publisher = LoggingLlmCallPublisher()
        elif backend == "pubsub":
            _publisher = HttpLlmCallPublisher()
        else:
            raise ValueError(f"Unsupported PUBLISHER_BACKEND: {settings.publisher_backend}")
    return _publisher


def get_synthesizer() -> Synthesizer:
    global _synthesizer
    if _synthesizer is None:
        _synthesizer = OpenRouterSynthesizer()
    return _synthesizer


def reset() -> None:
    """Drop cached collaborators so the next call rebuilds them from settings."""
    global _repository, _publisher, _synthesizer
    _repository = None
    _publisher = None
    _synthesizer = None
