"""Tests for the research retry reconciler."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from llm_orchestrator.models.research import LlmResultStatus, Research, ResearchStatus
from llm_orchestrator.models.results import Err, Ok, PublishError, RepositoryError, SynthesizerError
from llm_orchestrator.research.retry_research import (
    RetryAction,
    RetryResearchDeps,
    RetryResult,
    analyze_research_for_retry,
    retry_research,
)
from llm_orchestrator.research.run_synthesis import SynthesisDeps, SynthesisOutcome

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

RESET_FIELDS = {
    "status": "pending",
    "error": None,
    "started_at": None,
    "completed_at": None,
    "duration_ms": None,
}


def make_research(**overrides) -> Research:
    data = {
        "id": "research-1",
        "userId": "user-1",
        "title": "Test Research",
        "prompt": "Test research prompt",
        "status": "failed",
        "selectedLlms": ["google", "openai"],
        "synthesisLlm": "google",
        "llmResults": [
            {
                "provider": "google",
                "model": "gemini-2.0-flash",
                "status": "completed",
                "result": "Google Result",
            },
            {
                "provider": "openai",
                "model": "o4-mini-deep-research",
                "status": "failed",
                "error": "Rate limit",
            },
        ],
        "startedAt": "2024-01-01T10:00:00Z",
    }
    data.update(overrides)
    return Research.model_validate(data)


def completed(provider: str, model: str = "model", result: str = "Result") -> dict:
    return {"provider": provider, "model": model, "status": "completed", "result": result}


def failed(provider: str, error: str = "Error") -> dict:
    return {"provider": provider, "model": "model", "status": "failed", "error": error}


@pytest.fixture
def repo():
    mock = AsyncMock()
    mock.update = AsyncMock(return_value=Ok(None))
    mock.update_llm_result = AsyncMock(return_value=Ok(None))
    return mock


@pytest.fixture
def publisher():
    mock = AsyncMock()
    mock.publish_llm_call = AsyncMock(return_value=Ok(None))
    return mock


@pytest.fixture
def synthesizer():
    mock = AsyncMock()
    mock.synthesize = AsyncMock(return_value=Ok("Synthesized result"))
    return mock


@pytest.fixture
def deps(repo, publisher, synthesizer):
    return RetryResearchDeps(
        research_repo=repo,
        llm_call_publisher=publisher,
        synthesis_deps=SynthesisDeps(research_repo=repo, synthesizer=synthesizer, clock=lambda: NOW),
        clock=lambda: NOW,
    )


class TestAnalyzeResearchForRetry:
    def test_partitions_by_entry_status_and_ignores_pending(self):
        research = make_research(
            selectedLlms=["google", "openai", "anthropic"],
            llmResults=[
                failed("google"),
                {"provider": "openai", "model": "m", "status": "pending"},
                completed("anthropic"),
            ],
            synthesisError="boom",
        )

        analysis = analyze_research_for_retry(research)

        assert analysis.failed_llms == ["google"]
        assert analysis.successful_llms == ["anthropic"]
        assert analysis.has_synthesis_result is False
        assert analysis.has_synthesis_error is True

    def test_empty_synthesis_result_still_counts_as_present(self):
        analysis = analyze_research_for_retry(make_research(synthesizedResult=""))
        assert analysis.has_synthesis_result is True


class TestValidation:
    @pytest.mark.asyncio
    async def test_returns_error_when_research_not_found(self, deps, repo, publisher):
        repo.find_by_id.return_value = Ok(None)

        result = await retry_research("nonexistent", deps)

        assert result == RetryResult(ok=False, error="Research not found")
        publisher.publish_llm_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repository_error_reads_as_not_found(self, deps, repo):
        repo.find_by_id.return_value = Err(RepositoryError("DB_ERROR", "Error"))

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {"ok": False, "error": "Research not found"}
        repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["pending", "processing", "retrying", "completed"])
    async def test_only_failed_research_can_be_retried(self, deps, repo, publisher, status):
        repo.find_by_id.return_value = Ok(make_research(status=status))

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {
            "ok": False,
            "error": f"Cannot retry research with status: {status}. Only failed research can be retried.",
        }
        publisher.publish_llm_call.assert_not_awaited()
        repo.update.assert_not_awaited()
        repo.update_llm_result.assert_not_awaited()


class TestRetryingFailedLlms:
    @pytest.mark.asyncio
    async def test_retries_only_failed_providers(self, deps, repo, publisher):
        repo.find_by_id.return_value = Ok(make_research())

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {
            "ok": True,
            "action": "retrying_llms",
            "retriedProviders": ["openai"],
            "message": "Retrying 1 failed LLM provider",
        }
        repo.update.assert_awaited_once_with("research-1", {"status": "retrying"})
        repo.update_llm_result.assert_awaited_once_with("research-1", "openai", RESET_FIELDS)
        publisher.publish_llm_call.assert_awaited_once()
        event = publisher.publish_llm_call.await_args.args[0]
        assert event.to_payload() == {
            "type": "llm.call",
            "researchId": "research-1",
            "userId": "user-1",
            "provider": "openai",
            "prompt": "Test research prompt",
        }

    @pytest.mark.asyncio
    async def test_retries_every_provider_when_none_succeeded(self, deps, repo, publisher):
        repo.find_by_id.return_value = Ok(
            make_research(llmResults=[failed("google", "Error 1"), failed("openai", "Error 2")])
        )

        result = await retry_research("research-1", deps)

        assert result.ok is True
        assert result.action == RetryAction.RETRYING_LLMS
        assert result.retried_providers == ["google", "openai"]
        assert result.message == "Retrying 2 failed LLM providers"
        repo.update_llm_result.assert_any_await("research-1", "google", RESET_FIELDS)
        repo.update_llm_result.assert_any_await("research-1", "openai", RESET_FIELDS)
        assert publisher.publish_llm_call.await_count == 2

    @pytest.mark.asyncio
    async def test_keeps_encounter_order_of_failed_entries(self, deps, repo, publisher):
        repo.find_by_id.return_value = Ok(
            make_research(
                selectedLlms=["google", "openai", "anthropic"],
                llmResults=[failed("anthropic"), completed("google"), failed("openai")],
            )
        )

        result = await retry_research("research-1", deps)

        assert result.retried_providers == ["anthropic", "openai"]
        published = [c.args[0].provider for c in publisher.publish_llm_call.await_args_list]
        assert published == ["anthropic", "openai"]

    @pytest.mark.asyncio
    async def test_resets_all_entries_before_first_publish(self, deps, repo, publisher):
        calls: list[tuple[str, str]] = []

        async def record_update(research_id, provider, fields):
            calls.append(("update_llm_result", provider.value))
            return Ok(None)

        async def record_publish(event):
            calls.append(("publish", event.provider.value))
            return Ok(None)

        repo.find_by_id.return_value = Ok(
            make_research(
                selectedLlms=["google", "openai", "anthropic"],
                llmResults=[completed("google"), failed("openai"), failed("anthropic")],
            )
        )
        repo.update_llm_result.side_effect = record_update
        publisher.publish_llm_call.side_effect = record_publish

        await retry_research("research-1", deps)

        assert calls == [
            ("update_llm_result", "openai"),
            ("update_llm_result", "anthropic"),
            ("publish", "openai"),
            ("publish", "anthropic"),
        ]

    @pytest.mark.asyncio
    async def test_marks_llm_failed_when_publish_fails(self, deps, repo, publisher):
        repo.find_by_id.return_value = Ok(make_research())
        publisher.publish_llm_call.return_value = Err(PublishError("PUBLISH_ERROR", "Failed to publish"))

        result = await retry_research("research-1", deps)

        assert result.ok is True
        assert result.action == RetryAction.RETRYING_LLMS
        assert result.retried_providers == ["openai"]
        repo.update_llm_result.assert_awaited_with(
            "research-1",
            "openai",
            {"status": "failed", "error": "Failed to publish retry event: Failed to publish"},
        )

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_stop_remaining_providers(self, deps, repo, publisher):
        repo.find_by_id.return_value = Ok(
            make_research(llmResults=[failed("google"), failed("openai")])
        )
        publisher.publish_llm_call.side_effect = [
            Err(PublishError("PUBLISH_ERROR", "topic missing")),
            Ok(None),
        ]

        result = await retry_research("research-1", deps)

        assert result.retried_providers == ["google", "openai"]
        assert publisher.publish_llm_call.await_count == 2
        failure_writes = [
            c for c in repo.update_llm_result.await_args_list if c.args[2].get("status") == LlmResultStatus.FAILED
        ]
        assert len(failure_writes) == 1
        assert failure_writes[0].args[1] == "google"

    @pytest.mark.asyncio
    async def test_failed_status_write_is_best_effort(self, deps, repo, publisher):
        repo.find_by_id.return_value = Ok(make_research())
        repo.update.return_value = Err(RepositoryError("DB_ERROR", "write failed"))

        result = await retry_research("research-1", deps)

        assert result.ok is True
        publisher.publish_llm_call.assert_awaited_once()


class TestNoSuccessfulResults:
    @pytest.mark.asyncio
    async def test_all_pending_is_an_error_without_side_effects(self, deps, repo, publisher, synthesizer):
        repo.find_by_id.return_value = Ok(
            make_research(
                llmResults=[
                    {"provider": "google", "model": "m", "status": "pending"},
                    {"provider": "openai", "model": "m", "status": "pending"},
                ]
            )
        )

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {
            "ok": False,
            "error": "No successful LLM results to work with. Cannot retry research.",
        }
        repo.update.assert_not_awaited()
        repo.update_llm_result.assert_not_awaited()
        publisher.publish_llm_call.assert_not_awaited()
        synthesizer.synthesize.assert_not_awaited()


class TestSynthesisHandling:
    @pytest.mark.asyncio
    async def test_runs_synthesis_when_no_result_exists(self, deps, repo):
        research = make_research(llmResults=[completed("google"), completed("openai", result="Result 2")])
        repo.find_by_id.return_value = Ok(research)
        deps.synthesis_runner = AsyncMock(return_value=SynthesisOutcome(ok=True))

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {
            "ok": True,
            "action": "synthesis_completed",
            "message": "Synthesis completed successfully",
        }
        deps.synthesis_runner.assert_awaited_once_with("research-1", deps.synthesis_deps)

    @pytest.mark.asyncio
    async def test_runs_synthesis_when_previous_synthesis_failed(self, deps, repo):
        repo.find_by_id.return_value = Ok(
            make_research(
                llmResults=[completed("google"), completed("openai")],
                synthesisError="Previous synthesis failed",
            )
        )

        with patch(
            "llm_orchestrator.research.retry_research.run_synthesis",
            new=AsyncMock(return_value=SynthesisOutcome(ok=True)),
        ) as runner:
            result = await retry_research("research-1", deps)

        assert result.action == RetryAction.SYNTHESIS_COMPLETED
        runner.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reruns_synthesis_when_both_result_and_error_present(self, deps, repo):
        repo.find_by_id.return_value = Ok(
            make_research(
                llmResults=[completed("google")],
                synthesizedResult="stale",
                synthesisError="late failure",
            )
        )
        deps.synthesis_runner = AsyncMock(return_value=SynthesisOutcome(ok=True))

        await retry_research("research-1", deps)

        deps.synthesis_runner.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_returns_synthesizer_error(self, deps, repo, synthesizer):
        repo.find_by_id.return_value = Ok(
            make_research(llmResults=[completed("google"), completed("openai", result="Result 2")])
        )
        synthesizer.synthesize.return_value = Err(SynthesizerError("API_ERROR", "Synthesis failed"))

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {"ok": False, "error": "Synthesis failed"}
        synthesizer.synthesize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_defaults_error_message_when_runner_gives_none(self, deps, repo):
        repo.find_by_id.return_value = Ok(make_research(llmResults=[completed("google")]))
        deps.synthesis_runner = AsyncMock(return_value=SynthesisOutcome(ok=False))

        result = await retry_research("research-1", deps)

        assert result == RetryResult(ok=False, error="Synthesis failed")


class TestAlreadyCompleted:
    @pytest.mark.asyncio
    async def test_marks_completed_when_synthesis_exists(self, deps, repo):
        repo.find_by_id.return_value = Ok(
            make_research(
                llmResults=[completed("google"), completed("openai", result="Result 2")],
                synthesizedResult="Existing synthesis result",
            )
        )
        deps.synthesis_runner = AsyncMock()

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {
            "ok": True,
            "action": "already_completed",
            "message": "Research was already completed",
        }
        repo.update.assert_awaited_once_with(
            "research-1",
            {
                "status": "completed",
                "completed_at": "2024-01-01T12:00:00.000Z",
                "total_duration_ms": 7200000,
                "synthesis_error": None,
            },
        )
        deps.synthesis_runner.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skip_synthesis_completes_without_synthesis(self, deps, repo, synthesizer):
        repo.find_by_id.return_value = Ok(
            make_research(
                selectedLlms=["google"],
                llmResults=[completed("google")],
                skipSynthesis=True,
            )
        )

        result = await retry_research("research-1", deps)

        assert result.to_dict() == {
            "ok": True,
            "action": "synthesis_skipped",
            "message": "Research completed (synthesis skipped)",
        }
        repo.update.assert_awaited_once_with(
            "research-1",
            {
                "status": "completed",
                "completed_at": "2024-01-01T12:00:00.000Z",
                "total_duration_ms": 7200000,
                "synthesis_error": None,
            },
        )
        synthesizer.synthesize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skip_synthesis_wins_over_stale_synthesis_error(self, deps, repo, synthesizer):
        repo.find_by_id.return_value = Ok(
            make_research(
                llmResults=[completed("google")],
                skipSynthesis=True,
                synthesisError="old",
            )
        )

        result = await retry_research("research-1", deps)

        assert result.action == RetryAction.SYNTHESIS_SKIPPED
        assert repo.update.await_args.args[1]["synthesis_error"] is None
        synthesizer.synthesize.assert_not_awaited()
