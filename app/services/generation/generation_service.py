"""
Generation Service: entry point for question sets and concept explanations.

Sequence per call:
1. Validate the payload (no provider contacted on failure)
2. Consult the rate limiter for (task kind, identity)
3. Build the task prompt and run the fallback chain
4. Return a tagged success or exactly one classified failure
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from app.core.config import Settings, settings
from app.core.exceptions import (
    MESSAGES_BY_KIND,
    FAILURE_TO_ERROR_KIND,
    RETRYABLE_KINDS,
    AllProvidersFailedError,
    ErrorKind,
    FailureKind,
    GenerationError,
    InvalidRequestError,
    RateLimitExceededError,
)
from app.core.logger import log_async_execution_time, task_context
from app.core.prompts import build_prompt_spec
from app.schemas.generation import (
    ConceptParams,
    GenerationFailure,
    GenerationOutcome,
    GenerationRequest,
    GenerationSuccess,
    QuestionSetParams,
    RateLimitPolicy,
    TaskKind,
    TaskPolicy,
)
from app.services.generation.orchestrator import FallbackOrchestrator
from app.services.generation.providers import build_providers
from app.services.generation.rate_limiter import RateLimiter
from app.services.generation.retry import RetryPolicy

logger = logging.getLogger(__name__)

PARAMS_BY_KIND = {
    TaskKind.QUESTION_SET: QuestionSetParams,
    TaskKind.CONCEPT_EXPLANATION: ConceptParams,
}

_THROTTLE_KINDS = (ErrorKind.API_RATE_LIMIT, ErrorKind.QUOTA_EXCEEDED)


def _seconds(value: Optional[float]) -> Optional[int]:
    return None if value is None else max(0, math.ceil(value))


def _describe_validation_error(error: ValidationError) -> str:
    missing, invalid = [], []
    for item in error.errors():
        field = str(item["loc"][0]) if item.get("loc") else "body"
        if item["type"] == "missing":
            missing.append(field)
        else:
            invalid.append(field)
    parts = []
    if missing:
        parts.append(f"Missing required fields: {', '.join(missing)}")
    if invalid:
        parts.append(f"Invalid fields: {', '.join(dict.fromkeys(invalid))}")
    return "; ".join(parts) or "Invalid request"


def classify_failure(error: AllProvidersFailedError, default_retry_after: float) -> GenerationFailure:
    """
    Collapse a chain failure into one caller-facing error kind.

    Credential rejection anywhere wins (it needs an operator); otherwise the
    most recent transient failure decides, and only a chain of unknown
    failures is reported as GENERATION_FAILED.
    """
    if error.nothing_configured:
        kind = ErrorKind.NO_PROVIDER_CONFIGURED
    elif any(failure.kind is FailureKind.AUTH_ERROR for failure in error.failures):
        kind = ErrorKind.INVALID_API_KEY
    else:
        transient = [f.kind for f in error.failures if f.kind in RETRYABLE_KINDS]
        last_kind = transient[-1] if transient else error.failures[-1].kind
        kind = FAILURE_TO_ERROR_KIND[last_kind]

    retry_after = None
    if kind in _THROTTLE_KINDS:
        hints = [f.retry_after for f in error.failures if f.retry_after is not None]
        retry_after = max(hints) if hints else default_retry_after

    return GenerationFailure(
        message=MESSAGES_BY_KIND[kind],
        error=kind.value,
        retry_after=_seconds(retry_after),
    )


class GenerationService:
    """
    Validates, rate-limits and generates structured interview-prep content.

    One instance is shared by all requests; its only shared mutable state is
    the injected rate limiter.
    """

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        rate_limiter: RateLimiter,
        policies: Dict[TaskKind, TaskPolicy],
        max_question_count: int = 20,
        provider_retry_after: float = 60.0,
    ):
        self.orchestrator = orchestrator
        self.rate_limiter = rate_limiter
        self.policies = policies
        self.max_question_count = max_question_count
        self.provider_retry_after = provider_retry_after

    def _validate(self, kind: TaskKind, identity: str, payload: Any) -> GenerationRequest:
        if not identity or not str(identity).strip():
            raise InvalidRequestError("Missing requester identity")
        if not isinstance(payload, Mapping):
            raise InvalidRequestError("Request body must be a JSON object")
        try:
            params = PARAMS_BY_KIND[kind].model_validate(dict(payload))
        except ValidationError as e:
            raise InvalidRequestError(_describe_validation_error(e)) from e
        if isinstance(params, QuestionSetParams) and params.count > self.max_question_count:
            raise InvalidRequestError(f"count must be at most {self.max_question_count}")
        return GenerationRequest(kind=kind, params=params, identity=str(identity).strip())

    async def _enforce_quota(self, request: GenerationRequest) -> None:
        quota = self.policies[request.kind].rate_limit
        key = f"{request.kind.value}:{request.identity}"
        if not await self.rate_limiter.check_and_consume(key, quota.limit, quota.window):
            retry_after = self.rate_limiter.retry_after(quota.window)
            raise RateLimitExceededError(
                f"Rate limit exceeded: {quota.limit} {request.kind.value} requests per "
                f"{quota.window / 60:.0f} minutes. Try again later.",
                retry_after=retry_after,
            )

    @log_async_execution_time
    async def generate(self, kind: TaskKind, identity: str, payload: Any) -> GenerationOutcome:
        """
        Run one generation call end to end.

        Args:
            kind: Which task to perform.
            identity: Requester identity from the upstream auth layer.
            payload: Decoded JSON request body.

        Returns:
            GenerationSuccess tagged with the winning provider/model, or a
            GenerationFailure with a stable error kind.
        """
        with task_context(kind.value):
            try:
                request = self._validate(kind, identity, payload)
                await self._enforce_quota(request)
                prompt = build_prompt_spec(request)
                logger.info(f"Generating {kind.value} for {request.identity}")
                result = await self.orchestrator.generate(prompt, self.policies[kind].max_output_tokens)
            except GenerationError as e:
                logger.info(f"Rejected ({e.kind.value}): {e.message}")
                return GenerationFailure(message=e.message, error=e.kind.value, retry_after=_seconds(e.retry_after))
            except AllProvidersFailedError as e:
                failure = classify_failure(e, self.provider_retry_after)
                logger.error(f"Failed ({failure.error}): {e.message}")
                return failure

            if kind is TaskKind.QUESTION_SET and len(result.data) != request.params.count:
                logger.warning(f"Requested {request.params.count} questions, model returned {len(result.data)}")
            return GenerationSuccess(data=result.data, provider=result.provider)

    async def generate_questions(self, identity: str, payload: Any) -> GenerationOutcome:
        return await self.generate(TaskKind.QUESTION_SET, identity, payload)

    async def explain_concept(self, identity: str, payload: Any) -> GenerationOutcome:
        return await self.generate(TaskKind.CONCEPT_EXPLANATION, identity, payload)

    async def check_providers(self) -> Dict[str, bool]:
        """Probe every configured provider once (startup diagnostics)."""
        return {provider.name: await provider.ping() for provider in self.orchestrator.providers}


def build_generation_service(rate_limiter: RateLimiter, config: Settings = settings) -> GenerationService:
    """Wire the production service from settings."""
    window = float(config.RATE_LIMIT_WINDOW_SECONDS)
    policies = {
        TaskKind.QUESTION_SET: TaskPolicy(
            rate_limit=RateLimitPolicy(limit=config.QUESTION_SET_RATE_LIMIT, window=window),
            max_output_tokens=config.QUESTION_SET_MAX_TOKENS,
        ),
        TaskKind.CONCEPT_EXPLANATION: TaskPolicy(
            rate_limit=RateLimitPolicy(limit=config.EXPLANATION_RATE_LIMIT, window=window),
            max_output_tokens=config.EXPLANATION_MAX_TOKENS,
        ),
    }
    orchestrator = FallbackOrchestrator(
        providers=build_providers(config),
        retry_policy=RetryPolicy(max_attempts=config.RETRY_MAX_ATTEMPTS, base_delay=config.RETRY_BASE_DELAY),
    )
    return GenerationService(
        orchestrator=orchestrator,
        rate_limiter=rate_limiter,
        policies=policies,
        max_question_count=config.MAX_QUESTION_COUNT,
        provider_retry_after=config.PROVIDER_RETRY_AFTER_SECONDS,
    )
