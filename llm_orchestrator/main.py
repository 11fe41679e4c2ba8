from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from llm_orchestrator.api.routes import research
from llm_orchestrator.config import settings
from llm_orchestrator.services import research_store
from llm_orchestrator.services.database import PostgresResearchRepository


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    repo = research_store.get_research_repository()
    if isinstance(repo, PostgresResearchRepository):
        await repo.ensure_schema()
    yield
    # Shutdown
    if isinstance(repo, PostgresResearchRepository):
        await repo.close()


app = FastAPI(
    title="LLM Orchestrator",
    description="Multi-provider deep research orchestration",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(research.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "llm-orchestrator"}
