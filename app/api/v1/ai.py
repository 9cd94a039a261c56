import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.responses import JSONResponse

from app.api.deps import get_generation_service, get_requester_identity
from app.core.config import settings
from app.core.exceptions import HTTP_STATUS_BY_KIND, ErrorKind
from app.schemas.generation import GenerationOutcome
from app.services.generation import GenerationService

logger = logging.getLogger(__name__)

ai_router = APIRouter()

# Non-standard "client closed request" status, sent when the caller disconnected before the result was ready
CLIENT_CLOSED_REQUEST = 499


def outcome_response(outcome: GenerationOutcome) -> JSONResponse:
    """Render a tagged outcome with the HTTP status for its error kind."""
    if outcome.success:
        return JSONResponse(status_code=200, content=outcome.model_dump())

    headers = None
    if outcome.retry_after is not None:
        headers = {"Retry-After": str(outcome.retry_after)}
    return JSONResponse(
        status_code=HTTP_STATUS_BY_KIND.get(ErrorKind(outcome.error), 500),
        content=outcome.model_dump(),
        headers=headers,
    )


async def run_until_disconnect(request: Request, work: Awaitable[GenerationOutcome]) -> Optional[GenerationOutcome]:
    """
    Await ``work`` as a task, cancelling it if the client goes away.

    Cancellation propagates through retry back-off and the in-flight provider
    call, so abandoned requests stop consuming provider quota.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=settings.DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.warning("Client disconnected; cancelling generation")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                return None
    finally:
        if not task.done():
            task.cancel()


async def _respond(request: Request, work: Awaitable[GenerationOutcome]) -> Response:
    outcome = await run_until_disconnect(request, work)
    if outcome is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return outcome_response(outcome)


@ai_router.post("/ai/generate-questions")
async def generate_interview_questions(
    request: Request,
    payload: Any = Body(...),
    identity: str = Depends(get_requester_identity),
    service: GenerationService = Depends(get_generation_service),
):
    """
    Generate interview question/answer pairs.

    Body: ``{role, experience, topics, count}`` (``topicsToFocus`` and
    ``numberOfQuestions`` are accepted as aliases).
    """
    return await _respond(request, service.generate_questions(identity, payload))


@ai_router.post("/ai/generate-explanation")
async def generate_concept_explanation(
    request: Request,
    payload: Any = Body(...),
    identity: str = Depends(get_requester_identity),
    service: GenerationService = Depends(get_generation_service),
):
    """
    Explain the concept behind one interview question. Body: ``{question}``.
    """
    return await _respond(request, service.explain_concept(identity, payload))


@ai_router.get("/ai/providers")
async def list_providers(service: GenerationService = Depends(get_generation_service)):
    """Configured fallback chain, in priority order."""
    return {
        "providers": [
            {"name": provider.name, "models": provider.models}
            for provider in service.orchestrator.providers
        ]
    }
