"""LLM Orchestrator

Simple CLI for reconciling and inspecting research records.
"""

import argparse
import asyncio
import json
import sys

from llm_orchestrator.research.retry_research import RetryResearchDeps, retry_research
from llm_orchestrator.research.run_synthesis import SynthesisDeps
from llm_orchestrator.services import research_store
from llm_orchestrator.services.database import PostgresResearchRepository


async def _close(repo) -> None:
    if isinstance(repo, PostgresResearchRepository):
        await repo.close()


async def run_retry(research_id: str) -> int:
    """Run the retry reconciler once and print its outcome."""
    repo = research_store.get_research_repository()
    deps = RetryResearchDeps(
        research_repo=repo,
        llm_call_publisher=research_store.get_llm_call_publisher(),
        synthesis_deps=SynthesisDeps(
            research_repo=repo,
            synthesizer=research_store.get_synthesizer(),
        ),
    )
    try:
        result = await retry_research(research_id, deps)
    finally:
        await _close(repo)

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.ok else 1


async def show_research(research_id: str) -> int:
    repo = research_store.get_research_repository()
    try:
        loaded = await repo.find_by_id(research_id)
    finally:
        await _close(repo)

    if not loaded.ok:
        print(f"[!] Error: {loaded.error.message}", file=sys.stderr)
        return 1
    if loaded.value is None:
        print("[!] Research not found", file=sys.stderr)
        return 1
    print(json.dumps(loaded.value.to_document(), indent=2))
    return 0


def serve(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run("llm_orchestrator.main:app", host=host, port=port)
    return 0


def main():
    parser = argparse.ArgumentParser(description="LLM Orchestrator")
    subparsers = parser.add_subparsers(dest="command", required=True)

    retry_parser = subparsers.add_parser("retry", help="Retry a failed research")
    retry_parser.add_argument("research_id", help="Research id")

    show_parser = subparsers.add_parser("show", help="Print a stored research")
    show_parser.add_argument("research_id", help="Research id")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", "-p", type=int, default=8000)

    args = parser.parse_args()

    if args.command == "retry":
        sys.exit(asyncio.run(run_retry(args.research_id)))
    if args.command == "show":
        sys.exit(asyncio.run(show_research(args.research_id)))
    sys.exit(serve(args.host, args.port))


if __name__ == "__main__":
    main()
