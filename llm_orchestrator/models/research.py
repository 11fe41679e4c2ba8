"""Research record model and its status state machine.

Records are stored and served with camelCase field names (``userId``,
``llmResults``, ``synthesizedResult`` ...). Python code works with the
snake_case attributes; ``to_document_fields`` translates partial updates.

In a partial update a value of ``None`` clears the field.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class LlmProvider(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class LlmResultStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidStatusTransition(Exception):
    """Raised when code tries to write a status the current one cannot reach."""

    def __init__(self, current: "ResearchStatus", target: "ResearchStatus"):
        self.current = current
        self.target = target
        super().__init__(f"Illegal research status transition: {current.value} -> {target.value}")


class ResearchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: "ResearchStatus") -> bool:
        return target in _TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]


_TRANSITIONS: dict[ResearchStatus, frozenset[ResearchStatus]] = {
    ResearchStatus.PENDING: frozenset(
        {ResearchStatus.PROCESSING, ResearchStatus.FAILED, ResearchStatus.COMPLETED}
    ),
    ResearchStatus.PROCESSING: frozenset({ResearchStatus.COMPLETED, ResearchStatus.FAILED}),
    ResearchStatus.FAILED: frozenset(
        {ResearchStatus.RETRYING, ResearchStatus.COMPLETED, ResearchStatus.PROCESSING}
    ),
    ResearchStatus.RETRYING: frozenset(
        {ResearchStatus.PROCESSING, ResearchStatus.COMPLETED, ResearchStatus.FAILED}
    ),
    ResearchStatus.COMPLETED: frozenset(),
}


def ensure_transition(current: ResearchStatus, target: ResearchStatus) -> None:
    if not current.can_transition_to(target):
        raise InvalidStatusTransition(current, target)


_MODEL_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
)


class LlmResult(BaseModel):
    model_config = _MODEL_CONFIG

    provider: LlmProvider
    model: str
    status: LlmResultStatus = LlmResultStatus.PENDING
    result: str | None = None
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_ms: int | None = None


class Research(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    user_id: str
    title: str
    prompt: str
    status: ResearchStatus = ResearchStatus.PENDING
    selected_llms: list[LlmProvider]
    synthesis_llm: LlmProvider
    llm_results: list[LlmResult]
    synthesized_result: str | None = None
    synthesis_error: str | None = None
    skip_synthesis: bool | None = None
    started_at: str
    completed_at: str | None = None
    total_duration_ms: int | None = None

    def llm_result_for(self, provider: LlmProvider | str) -> LlmResult | None:
        for llm_result in self.llm_results:
            if llm_result.provider == provider:
                return llm_result
        return None

    def completed_results(self) -> list[LlmResult]:
        return [r for r in self.llm_results if r.status == LlmResultStatus.COMPLETED]

    def duration_ms_until(self, now: datetime) -> int:
        delta = now - parse_timestamp(self.started_at)
        return int(delta.total_seconds() * 1000)

    def completion_fields(self, now: datetime) -> dict[str, Any]:
        """Partial update that finalizes the record as completed.

        A completed record never keeps a synthesis error, so the field is
        always cleared here.
        """
        ensure_transition(self.status, ResearchStatus.COMPLETED)
        return {
            "status": ResearchStatus.COMPLETED,
            "completed_at": format_timestamp(now),
            "total_duration_ms": self.duration_ms_until(now),
            "synthesis_error": None,
        }

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Partial update applied to a failed provider entry before it is re-dispatched.
RESET_LLM_RESULT_FIELDS: dict[str, Any] = {
    "status": LlmResultStatus.PENDING,
    "error": None,
    "started_at": None,
    "completed_at": None,
    "duration_ms": None,
}


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2024-01-01T12:00:00.000Z``."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _document_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, list):
        return [_document_value(v) for v in value]
    return value


def to_document_fields(model: type[BaseModel], fields: dict[str, Any]) -> dict[str, Any]:
    """Translate a snake_case partial update into stored (camelCase) field names."""
    translated: dict[str, Any] = {}
    for name, value in fields.items():
        info = model.model_fields.get(name)
        if info is None:
            raise KeyError(f"Unknown {model.__name__} field: {name}")
        translated[info.alias or name] = _document_value(value)
    return translated


def apply_document_update(document: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """Merge translated fields into a stored document; ``None`` drops the key."""
    for key, value in fields.items():
        if value is None:
            document.pop(key, None)
        else:
            document[key] = value
    return document
