"""Retry a failed research.

Only the work the record still needs is redone:
1. failed provider calls are reset and re-dispatched,
2. synthesis is re-run when it failed or never ran,
3. otherwise the research is marked completed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from llm_orchestrator.models.events import LlmCallEvent
from llm_orchestrator.models.research import (
    RESET_LLM_RESULT_FIELDS,
    LlmProvider,
    LlmResultStatus,
    Research,
    ResearchStatus,
    ensure_transition,
)
from llm_orchestrator.research.ports import LlmCallPublisher, ResearchRepository
from llm_orchestrator.research.run_synthesis import SynthesisDeps, SynthesisOutcome, run_synthesis
from llm_orchestrator.services import logger as log_service
from llm_orchestrator.services.logger import logger

SynthesisRunner = Callable[[str, SynthesisDeps], Awaitable[SynthesisOutcome]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryAction(str, Enum):
    RETRYING_LLMS = "retrying_llms"
    SYNTHESIS_COMPLETED = "synthesis_completed"
    ALREADY_COMPLETED = "already_completed"
    SYNTHESIS_SKIPPED = "synthesis_skipped"


@dataclass
class RetryResearchDeps:
    research_repo: ResearchRepository
    llm_call_publisher: LlmCallPublisher
    synthesis_deps: SynthesisDeps
    synthesis_runner: SynthesisRunner | None = None
    clock: Callable[[], datetime] = field(default=_utcnow)


@dataclass(frozen=True)
class RetryResult:
    ok: bool
    error: str | None = None
    action: RetryAction | None = None
    retried_providers: list[LlmProvider] | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form; unset fields are left out."""
        data: dict[str, Any] = {"ok": self.ok}
        if self.error is not None:
            data["error"] = self.error
        if self.action is not None:
            data["action"] = self.action.value
        if self.retried_providers is not None:
            data["retriedProviders"] = [p.value for p in self.retried_providers]
        if self.message is not None:
            data["message"] = self.message
        return data


@dataclass(frozen=True)
class RetryAnalysis:
    failed_llms: list[LlmProvider]
    successful_llms: list[LlmProvider]
    has_synthesis_result: bool
    has_synthesis_error: bool


def analyze_research_for_retry(research: Research) -> RetryAnalysis:
    failed_llms: list[LlmProvider] = []
    successful_llms: list[LlmProvider] = []

    # Pending entries are still in flight and belong to neither list.
    for llm_result in research.llm_results:
        if llm_result.status == LlmResultStatus.FAILED:
            failed_llms.append(llm_result.provider)
        elif llm_result.status == LlmResultStatus.COMPLETED:
            successful_llms.append(llm_result.provider)

    return RetryAnalysis(
        failed_llms=failed_llms,
        successful_llms=successful_llms,
        has_synthesis_result=research.synthesized_result is not None,
        has_synthesis_error=research.synthesis_error is not None,
    )


def _retry_message(count: int) -> str:
    return f"Retrying {count} failed LLM provider{'' if count == 1 else 's'}"


async def _retry_failed_llms(
    research: Research,
    failed_llms: list[LlmProvider],
    deps: RetryResearchDeps,
) -> RetryResult:
    repo = deps.research_repo
    research_id = research.id

    ensure_transition(research.status, ResearchStatus.RETRYING)
    marked = await repo.update(research_id, {"status": ResearchStatus.RETRYING})
    if not marked.ok:
        logger.warning(f"Could not mark research {research_id} as retrying: {marked.error.message}")

    # Every failed entry is back to pending before the first publish.
    for provider in failed_llms:
        reset = await repo.update_llm_result(research_id, provider, dict(RESET_LLM_RESULT_FIELDS))
        if not reset.ok:
            logger.warning(
                f"Could not reset {provider.value} result for research {research_id}: {reset.error.message}"
            )

    for provider in failed_llms:
        published = await deps.llm_call_publisher.publish_llm_call(
            LlmCallEvent(
                research_id=research_id,
                user_id=research.user_id,
                provider=provider,
                prompt=research.prompt,
            )
        )
        if published.ok:
            continue

        error = f"Failed to publish retry event: {published.error.message}"
        logger.warning(f"Research {research_id} provider {provider.value}: {error}")
        marked_failed = await repo.update_llm_result(
            research_id,
            provider,
            {"status": LlmResultStatus.FAILED, "error": error},
        )
        if not marked_failed.ok:
            logger.warning(
                f"Could not record publish failure for {provider.value} on research {research_id}: "
                f"{marked_failed.error.message}"
            )

    log_service.log_research_step(
        research_id,
        "retry",
        RetryAction.RETRYING_LLMS.value,
        {"providers": [p.value for p in failed_llms]},
    )
    return RetryResult(
        ok=True,
        action=RetryAction.RETRYING_LLMS,
        retried_providers=list(failed_llms),
        message=_retry_message(len(failed_llms)),
    )


async def retry_research(research_id: str, deps: RetryResearchDeps) -> RetryResult:
    repo = deps.research_repo

    loaded = await repo.find_by_id(research_id)
    if not loaded.ok or loaded.value is None:
        if not loaded.ok:
            logger.warning(f"Failed to load research {research_id}: {loaded.error.message}")
        return RetryResult(ok=False, error="Research not found")
    research = loaded.value

    if research.status != ResearchStatus.FAILED:
        return RetryResult(
            ok=False,
            error=(
                f"Cannot retry research with status: {research.status.value}. "
                "Only failed research can be retried."
            ),
        )

    analysis = analyze_research_for_retry(research)

    if analysis.failed_llms:
        return await _retry_failed_llms(research, analysis.failed_llms, deps)

    if not analysis.successful_llms:
        return RetryResult(
            ok=False,
            error="No successful LLM results to work with. Cannot retry research.",
        )

    skip_synthesis = research.skip_synthesis is True
    needs_synthesis = not skip_synthesis and (
        not analysis.has_synthesis_result or analysis.has_synthesis_error
    )

    if needs_synthesis:
        runner = deps.synthesis_runner or run_synthesis
        outcome = await runner(research_id, deps.synthesis_deps)
        if outcome.ok:
            log_service.log_research_step(research_id, "retry", RetryAction.SYNTHESIS_COMPLETED.value)
            return RetryResult(
                ok=True,
                action=RetryAction.SYNTHESIS_COMPLETED,
                message="Synthesis completed successfully",
            )
        return RetryResult(ok=False, error=outcome.error or "Synthesis failed")

    completed = await repo.update(research_id, research.completion_fields(deps.clock()))
    if not completed.ok:
        logger.warning(f"Could not mark research {research_id} completed: {completed.error.message}")

    if skip_synthesis:
        log_service.log_research_step(research_id, "retry", RetryAction.SYNTHESIS_SKIPPED.value)
        return RetryResult(
            ok=True,
            action=RetryAction.SYNTHESIS_SKIPPED,
            message="Research completed (synthesis skipped)",
        )

    log_service.log_research_step(research_id, "retry", RetryAction.ALREADY_COMPLETED.value)
    return RetryResult(
        ok=True,
        action=RetryAction.ALREADY_COMPLETED,
        message="Research was already completed",
    )
