from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from llm_orchestrator.api.deps import (
    get_research_repository,
    get_retry_deps,
    get_submit_deps,
    get_user_id,
)
from llm_orchestrator.models.research import Research
from llm_orchestrator.models.schemas import (
    ResearchListResponse,
    ResearchSubmitRequest,
    ResearchSubmitResponse,
    RetryResponse,
)
from llm_orchestrator.research.ports import ResearchRepository
from llm_orchestrator.research.retry_research import RetryResearchDeps, retry_research
from llm_orchestrator.research.submit_research import SubmitResearchDeps, submit_research
from llm_orchestrator.services import logger as log_service
from llm_orchestrator.services.logger import logger

router = APIRouter(prefix="/api/research", tags=["research"])

NOT_FOUND = "Research not found"


async def _load_owned(repo: ResearchRepository, research_id: str, user_id: str) -> Research:
    """Fetch a research the caller owns; foreign records look missing."""
    loaded = await repo.find_by_id(research_id)
    if not loaded.ok:
        logger.warning(f"Failed to load research {research_id}: {loaded.error.message}")
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    research = loaded.value
    if research is None or research.user_id != user_id:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return research


@router.post(
    "",
    response_model=ResearchSubmitResponse,
    response_model_by_alias=True,
    status_code=201,
)
async def create_research(
    request: ResearchSubmitRequest,
    user_id: str = Depends(get_user_id),
    deps: SubmitResearchDeps = Depends(get_submit_deps),
):
    """Store a new research and dispatch one LLM call per selected provider."""
    submitted = await submit_research(request, user_id, deps)
    if not submitted.ok:
        raise HTTPException(status_code=500, detail=submitted.error.message)
    return ResearchSubmitResponse(id=submitted.value.id)


@router.get("", response_model=ResearchListResponse, response_model_by_alias=True)
async def list_research(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    sort: Literal["newest", "oldest"] = "newest",
    user_id: str = Depends(get_user_id),
    repo: ResearchRepository = Depends(get_research_repository),
):
    # One extra row tells whether another page exists.
    offset = (page - 1) * limit
    listed = await repo.find_by_user_id(user_id, offset=offset, limit=limit + 1, sort=sort)
    if not listed.ok:
        raise HTTPException(status_code=500, detail=listed.error.message)
    items = listed.value
    return ResearchListResponse(
        items=items[:limit],
        page=page,
        limit=limit,
        has_more=len(items) > limit,
    )


@router.get(
    "/{research_id}",
    response_model=Research,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def get_research(
    research_id: str,
    user_id: str = Depends(get_user_id),
    repo: ResearchRepository = Depends(get_research_repository),
):
    return await _load_owned(repo, research_id, user_id)


@router.delete("/{research_id}", status_code=204)
async def delete_research(
    research_id: str,
    user_id: str = Depends(get_user_id),
    repo: ResearchRepository = Depends(get_research_repository),
):
    await _load_owned(repo, research_id, user_id)
    deleted = await repo.delete(research_id)
    if not deleted.ok:
        raise HTTPException(status_code=500, detail=deleted.error.message)
    return Response(status_code=204)


@router.post(
    "/{research_id}/retry",
    response_model=RetryResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def retry(
    research_id: str,
    user_id: str = Depends(get_user_id),
    deps: RetryResearchDeps = Depends(get_retry_deps),
):
    """Re-run whatever a failed research still needs."""
    await _load_owned(deps.research_repo, research_id, user_id)

    result = await retry_research(research_id, deps)
    log_service.log_event(
        event_type="research_retry",
        message="Retry requested",
        research_id=research_id,
        result=result.to_dict(),
    )
    if not result.ok:
        status_code = 404 if result.error == NOT_FOUND else 409
        raise HTTPException(status_code=status_code, detail=result.error)

    return RetryResponse(
        action=result.action.value,
        message=result.message,
        retried_providers=result.retried_providers,
    )
