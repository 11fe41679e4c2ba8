"""Result values returned across collaborator seams instead of raising."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T
    ok: Literal[True] = True


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    error: E
    ok: Literal[False] = False


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True, slots=True)
class RepositoryError:
    code: str  # NOT_FOUND | DB_ERROR
    message: str


@dataclass(frozen=True, slots=True)
class PublishError:
    code: str  # PUBLISH_ERROR
    message: str


@dataclass(frozen=True, slots=True)
class SynthesizerError:
    code: str  # API_ERROR | EMPTY_RESPONSE
    message: str
