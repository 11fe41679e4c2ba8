from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from llm_orchestrator.research.ports import LlmCallPublisher, ResearchRepository, Synthesizer
from llm_orchestrator.research.retry_research import RetryResearchDeps
from llm_orchestrator.research.run_synthesis import SynthesisDeps
from llm_orchestrator.research.submit_research import SubmitResearchDeps
from llm_orchestrator.services import research_store


def get_research_repository() -> ResearchRepository:
    return research_store.get_research_repository()


def get_llm_call_publisher() -> LlmCallPublisher:
    return research_store.get_llm_call_publisher()


def get_synthesizer() -> Synthesizer:
    return research_store.get_synthesizer()


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the authenticating gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_retry_deps(
    repo: ResearchRepository = Depends(get_research_repository),
    publisher: LlmCallPublisher = Depends(get_llm_call_publisher),
    synthesizer: Synthesizer = Depends(get_synthesizer),
) -> RetryResearchDeps:
    return RetryResearchDeps(
        research_repo=repo,
        llm_call_publisher=publisher,
        synthesis_deps=SynthesisDeps(research_repo=repo, synthesizer=synthesizer),
    )


def get_submit_deps(
    repo: ResearchRepository = Depends(get_research_repository),
    publisher: LlmCallPublisher = Depends(get_llm_call_publisher),
) -> SubmitResearchDeps:
    return SubmitResearchDeps(research_repo=repo, llm_call_publisher=publisher)
