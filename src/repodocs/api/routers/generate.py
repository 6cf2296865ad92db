"""Documentation generation endpoint, streamed as server-sent events."""

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from repodocs.api.deps import get_orchestrator, get_settings
from repodocs.api.errors import http_error
from repodocs.api.schemas import GenerateRequest
from repodocs.config import Config
from repodocs.errors import RepoDocsError, ValidationError
from repodocs.generation.budget import BudgetMode
from repodocs.generation.orchestrator import (
    GenerationOrchestrator,
    GenerationProgress,
    GenerationRequest,
)
from repodocs.llm.providers import get_provider
from repodocs.repo.url_parser import parse_repo_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])

# Runs keep going after their stream closes until they notice the cancel
# event; holding a reference stops them from being garbage collected.
_running_tasks: set[asyncio.Task] = set()


def format_event(payload: dict[str, Any]) -> str:
    """One SSE frame: a ``data:`` line holding a JSON object."""
    return f"data: {json.dumps(payload)}\n\n"


@router.post("/generate")
async def generate(
    body: GenerateRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    settings: Config = Depends(get_settings),
) -> StreamingResponse:
    """Generate documentation and stream progress.

    Each event is one of ``{"progress": ...}``, ``{"result": ...}`` or
    ``{"error": ..., "errorKind": ...}``; the last two end the stream.
    Closing the stream cancels the run, and nothing is saved.
    """
    try:
        parse_repo_url(body.repo_url)
    except ValidationError as e:
        raise http_error(e)
    if get_provider(body.llm_provider) is None:
        raise HTTPException(status_code=400, detail=f"Unknown provider: {body.llm_provider}")

    request = GenerationRequest(
        repo_url=body.repo_url,
        llm_provider=body.llm_provider,
        llm_model=body.llm_model,
        llm_api_key=body.llm_api_key,
        llm_base_url=body.llm_base_url,
        github_token=body.github_token or settings.github_token,
        user_id=body.user_id,
        linked_project_id=body.linked_project_id,
        language=body.language,
        mode=BudgetMode(body.documentation_mode),
    )
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
    cancel_event = asyncio.Event()

    async def on_progress(progress: GenerationProgress) -> None:
        await queue.put({"progress": progress.to_dict()})

    async def produce() -> None:
        try:
            result = await orchestrator.run(request, on_progress, cancel_event)
            await queue.put({"result": result.to_dict()})
        except RepoDocsError as e:
            await queue.put({"error": e.message, "errorKind": e.kind})
        except Exception as e:
            logger.exception(f"Unexpected failure generating docs for {body.repo_url}")
            await queue.put({"error": f"Internal error: {e}", "errorKind": "internal"})
        finally:
            await queue.put(None)

    async def event_generator():
        """Relay queued events until the run finishes or the client leaves."""
        task = asyncio.create_task(produce())
        _running_tasks.add(task)
        task.add_done_callback(_running_tasks.discard)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield format_event(event)
        finally:
            if not task.done():
                logger.info(f"Client left, cancelling generation for {body.repo_url}")
                cancel_event.set()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
