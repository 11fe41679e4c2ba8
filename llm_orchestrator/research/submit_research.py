from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from llm_orchestrator.config import settings
from llm_orchestrator.models.events import LlmCallEvent
from llm_orchestrator.models.research import (
    LlmResult,
    LlmResultStatus,
    Research,
    ResearchStatus,
    ensure_transition,
    format_timestamp,
)
from llm_orchestrator.models.results import Err, Ok, RepositoryError, Result
from llm_orchestrator.models.schemas import ResearchSubmitRequest
from llm_orchestrator.research.ports import LlmCallPublisher, ResearchRepository
from llm_orchestrator.services import logger as log_service
from llm_orchestrator.services.logger import logger

TITLE_MAX_CHARS = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SubmitResearchDeps:
    research_repo: ResearchRepository
    llm_call_publisher: LlmCallPublisher
    clock: Callable[[], datetime] = field(default=_utcnow)
    id_factory: Callable[[], str] = field(default=lambda: str(uuid4()))


def build_research(
    request: ResearchSubmitRequest,
    user_id: str,
    *,
    research_id: str,
    started_at: datetime,
) -> Research:
    """Create a pending research with one pending entry per distinct provider."""
    providers = list(dict.fromkeys(request.selected_llms))
    title = (request.title or "").strip() or request.prompt.strip()[:TITLE_MAX_CHARS]
    return Research(
        id=research_id,
        user_id=user_id,
        title=title,
        prompt=request.prompt,
        status=ResearchStatus.PENDING,
        selected_llms=providers,
        synthesis_llm=request.synthesis_llm or providers[0],
        llm_results=[
            LlmResult(provider=p, model=settings.model_for_provider(p.value)) for p in providers
        ],
        skip_synthesis=request.skip_synthesis or len(providers) == 1,
        started_at=format_timestamp(started_at),
    )


async def submit_research(
    request: ResearchSubmitRequest,
    user_id: str,
    deps: SubmitResearchDeps,
) -> Result[Research, RepositoryError]:
    research = build_research(
        request,
        user_id,
        research_id=deps.id_factory(),
        started_at=deps.clock(),
    )

    saved = await deps.research_repo.save(research)
    if not saved.ok:
        logger.error(f"Failed to save research for user {user_id}: {saved.error.message}")
        return Err(saved.error)

    dispatched = 0
    for provider in research.selected_llms:
        published = await deps.llm_call_publisher.publish_llm_call(
            LlmCallEvent(
                research_id=research.id,
                user_id=user_id,
                provider=provider,
                prompt=research.prompt,
            )
        )
        if published.ok:
            dispatched += 1
            continue
        error = f"Failed to publish LLM call event: {published.error.message}"
        logger.warning(f"Research {research.id} provider {provider.value}: {error}")
        marked = await deps.research_repo.update_llm_result(
            research.id, provider, {"status": LlmResultStatus.FAILED, "error": error}
        )
        if not marked.ok:
            logger.warning(
                f"Could not record publish failure for {provider.value} on research {research.id}: "
                f"{marked.error.message}"
            )
        entry = research.llm_result_for(provider)
        if entry is not None:
            entry.status = LlmResultStatus.FAILED
            entry.error = error

    # No provider was dispatched; fail the research so it can be retried.
    if dispatched == 0:
        ensure_transition(research.status, ResearchStatus.FAILED)
        failed = await deps.research_repo.update(research.id, {"status": ResearchStatus.FAILED})
        if not failed.ok:
            logger.warning(f"Could not mark research {research.id} as failed: {failed.error.message}")
        research.status = ResearchStatus.FAILED

    log_service.log_research_step(
        research.id,
        "submit",
        "dispatched" if dispatched else "failed",
        {"providers": [p.value for p in research.selected_llms], "dispatched": dispatched},
    )
    return Ok(research)
