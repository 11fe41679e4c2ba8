"""Combine the completed provider outputs of a research into one result."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from llm_orchestrator.models.research import ResearchStatus, format_timestamp
from llm_orchestrator.research.ports import ResearchRepository, Synthesizer
from llm_orchestrator.services import logger as log_service
from llm_orchestrator.services.logger import logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SynthesisDeps:
    research_repo: ResearchRepository
    synthesizer: Synthesizer
    clock: Callable[[], datetime] = field(default=_utcnow)


@dataclass(frozen=True)
class SynthesisOutcome:
    ok: bool
    error: str | None = None


async def run_synthesis(research_id: str, deps: SynthesisDeps) -> SynthesisOutcome:
    """Synthesize a research and record the outcome on it.

    On success the record is finalized as completed with the synthesized
    text; on failure ``synthesis_error`` is stored and the record is marked
    failed so it can be retried.
    """
    repo = deps.research_repo

    loaded = await repo.find_by_id(research_id)
    if not loaded.ok or loaded.value is None:
        return SynthesisOutcome(ok=False, error="Research not found")
    research = loaded.value

    reports = [
        {"provider": r.provider.value, "content": r.result or ""}
        for r in research.completed_results()
    ]
    if not reports:
        return SynthesisOutcome(ok=False, error="No successful LLM results to synthesize")

    log_service.log_research_step(
        research_id, "synthesis", "started", {"providers": [r["provider"] for r in reports]}
    )
    synthesized = await deps.synthesizer.synthesize(research.prompt, reports)

    if not synthesized.ok:
        message = synthesized.error.message
        update = await repo.update(
            research_id,
            {"status": ResearchStatus.FAILED, "synthesis_error": message},
        )
        if not update.ok:
            logger.warning(f"Failed to record synthesis error for {research_id}: {update.error.message}")
        log_service.log_research_step(research_id, "synthesis", "failed", {"error": message})
        return SynthesisOutcome(ok=False, error=message)

    now = deps.clock()
    update = await repo.update(
        research_id,
        {
            "synthesized_result": synthesized.value,
            "synthesis_error": None,
            "status": ResearchStatus.COMPLETED,
            "completed_at": format_timestamp(now),
            "total_duration_ms": research.duration_ms_until(now),
        },
    )
    if not update.ok:
        log_service.log_research_step(
            research_id, "synthesis", "failed", {"error": update.error.message}
        )
        return SynthesisOutcome(ok=False, error=update.error.message)

    log_service.log_research_step(research_id, "synthesis", "completed")
    return SynthesisOutcome(ok=True)
