"""OpenRouter-backed synthesizer using the OpenAI-compatible SDK."""
from __future__ import annotations

import time
from typing import Any

from llm_orchestrator.config import settings
from llm_orchestrator.models.results import Err, Ok, Result, SynthesizerError
from llm_orchestrator.services import logger as log_service

SYNTHESIS_SYSTEM_PROMPT = (
    "You combine several independent research reports on the same question into one "
    "consolidated report. Keep every well-supported finding, reconcile disagreements "
    "explicitly, drop duplicated material, and preserve source links. Answer in Markdown."
)


def build_synthesis_prompt(prompt: str, reports: list[dict[str, str]]) -> str:
    sections = [f"## Research question\n\n{prompt}"]
    for report in reports:
        sections.append(f"## Report from {report['provider']}\n\n{report['content']}")
    return "\n\n".join(sections)


def get_client() -> Any:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )


def get_model() -> str:
    return settings.synthesis_model


class OpenRouterSynthesizer:
    def __init__(self, client: Any | None = None, model: str | None = None):
        self._client = client
        self.model = model or get_model()

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def synthesize(
        self, prompt: str, reports: list[dict[str, str]]
    ) -> Result[str, SynthesizerError]:
        from openai import OpenAIError

        started = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYNTHESIS_SYSTEM_PROMPT},
                    {"role": "user", "content": build_synthesis_prompt(prompt, reports)},
                ],
                max_tokens=settings.synthesis_max_tokens,
            )
        except OpenAIError as exc:
            log_service.log_llm_call(
                model=self.model,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc),
            )
            return Err(SynthesizerError("API_ERROR", str(exc)))

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        text = getattr(choices[0].message, "content", None) if choices else None
        if not text or not text.strip():
            return Err(SynthesizerError("EMPTY_RESPONSE", "Synthesis model returned no content"))
        return Ok(text)
