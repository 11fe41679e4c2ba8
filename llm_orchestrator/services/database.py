"""PostgreSQL research repository using asyncpg.

Each research is stored as a JSONB document (camelCase keys, the same shape
the API serves) next to a few indexed columns used for listing.
"""

from __future__ import annotations

import json
from typing import Any

import asyncpg
from pydantic import ValidationError

from llm_orchestrator.config import settings
from llm_orchestrator.models.research import (
    LlmProvider,
    LlmResult,
    Research,
    apply_document_update,
    to_document_fields,
)
from llm_orchestrator.models.results import Err, Ok, RepositoryError, Result
from llm_orchestrator.research.ports import SortOrder
from llm_orchestrator.services import logger as log_service

TABLE = "researches"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    started_at TEXT NOT NULL,
    data JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS {TABLE}_user_started_idx ON {TABLE} (user_id, started_at);
"""


def _coerce_json_object(value: Any) -> dict[str, Any]:
    """Normalize JSONB values returned as text into dictionaries."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _db_error(operation: str, exc: Exception) -> Err[RepositoryError]:
    log_service.log_db_operation(operation, TABLE, "error", error=str(exc))
    return Err(RepositoryError("DB_ERROR", str(exc)))


def _parse_research(data: Any) -> Research:
    return Research.model_validate(_coerce_json_object(data))


class PostgresResearchRepository:
    def __init__(self, dsn: str | None = None, *, pool: asyncpg.Pool | None = None):
        self._dsn = dsn or settings.database_url
        self._pool = pool

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            if not self._dsn:
                raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=settings.database_pool_min_size,
                max_size=settings.database_pool_max_size,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def save(self, research: Research) -> Result[Research, RepositoryError]:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO {TABLE} (id, user_id, started_at, data)
                    VALUES ($1, $2, $3, $4::jsonb)
                    ON CONFLICT (id) DO UPDATE
                    SET user_id = EXCLUDED.user_id,
                        started_at = EXCLUDED.started_at,
                        data = EXCLUDED.data
                    """,
                    research.id,
                    research.user_id,
                    research.started_at,
                    json.dumps(research.to_document()),
                )
        except (asyncpg.PostgresError, OSError, RuntimeError) as exc:
            return _db_error("save", exc)
        log_service.log_db_operation("save", TABLE, "success", details=research.id)
        return Ok(research)

    async def find_by_id(self, research_id: str) -> Result[Research | None, RepositoryError]:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(f"SELECT data FROM {TABLE} WHERE id = $1", research_id)
        except (asyncpg.PostgresError, OSError, RuntimeError) as exc:
            return _db_error("find_by_id", exc)
        if row is None:
            return Ok(None)
        try:
            return Ok(_parse_research(row["data"]))
        except ValidationError as exc:
            return _db_error("find_by_id", exc)

    async def find_by_user_id(
        self,
        user_id: str,
        *,
        offset: int = 0,
        limit: int = 50,
        sort: SortOrder = "newest",
    ) -> Result[list[Research], RepositoryError]:
        direction = "DESC" if sort == "newest" else "ASC"
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT data FROM {TABLE}
                    WHERE user_id = $1
                    ORDER BY started_at {direction}
                    LIMIT $2 OFFSET $3
                    """,
                    user_id,
                    limit,
                    offset,
                )
        except (asyncpg.PostgresError, OSError, RuntimeError) as exc:
            return _db_error("find_by_user_id", exc)
        try:
            return Ok([_parse_research(r["data"]) for r in rows])
        except ValidationError as exc:
            return _db_error("find_by_user_id", exc)

    async def _modify_document(
        self, operation: str, research_id: str, modify
    ) -> Result[None, RepositoryError]:
        """Read-modify-write one document under a row lock."""
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"SELECT data FROM {TABLE} WHERE id = $1 FOR UPDATE", research_id
                    )
                    if row is None:
                        return Err(RepositoryError("NOT_FOUND", f"Research {research_id} not found"))
                    document = _coerce_json_object(row["data"])
                    error = modify(document)
                    if error is not None:
                        return Err(error)
                    await conn.execute(
                        f"UPDATE {TABLE} SET data = $2::jsonb WHERE id = $1",
                        research_id,
                        json.dumps(document),
                    )
        except (asyncpg.PostgresError, OSError, RuntimeError) as exc:
            return _db_error(operation, exc)
        log_service.log_db_operation(operation, TABLE, "success", details=research_id)
        return Ok(None)

    async def update(self, research_id: str, fields: dict[str, Any]) -> Result[None, RepositoryError]:
        translated = to_document_fields(Research, fields)

        def modify(document: dict[str, Any]) -> RepositoryError | None:
            apply_document_update(document, translated)
            return None

        return await self._modify_document("update", research_id, modify)

    async def update_llm_result(
        self, research_id: str, provider: LlmProvider, fields: dict[str, Any]
    ) -> Result[None, RepositoryError]:
        provider_key = LlmProvider(provider).value
        translated = to_document_fields(LlmResult, fields)

        def modify(document: dict[str, Any]) -> RepositoryError | None:
            for entry in document.get("llmResults", []):
                if entry.get("provider") == provider_key:
                    apply_document_update(entry, translated)
                    return None
            return RepositoryError("NOT_FOUND", f"No {provider_key} result on research {research_id}")

        return await self._modify_document("update_llm_result", research_id, modify)

    async def delete(self, research_id: str) -> Result[None, RepositoryError]:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(f"DELETE FROM {TABLE} WHERE id = $1", research_id)
        except (asyncpg.PostgresError, OSError, RuntimeError) as exc:
            return _db_error("delete", exc)
        log_service.log_db_operation("delete", TABLE, "success", details=research_id)
        return Ok(None)
