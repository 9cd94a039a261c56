"""
pytest configuration and shared fixtures.
"""
import os
from typing import Callable

import pytest

# Never pick up real provider credentials during tests
os.environ["GEMINI_API_KEY"] = ""
os.environ["GROQ_API_KEY"] = ""

from app.schemas.generation import RateLimitPolicy, TaskKind, TaskPolicy  # noqa: E402
from app.services.generation.generation_service import GenerationService  # noqa: E402
from app.services.generation.orchestrator import FallbackOrchestrator  # noqa: E402
from app.services.generation.rate_limiter import InMemoryRateLimiter  # noqa: E402
from app.services.generation.retry import RetryPolicy  # noqa: E402
from app.tests.stubs import FakeClock, no_sleep  # noqa: E402


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter(fake_clock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(sweep_interval=3600, clock=fake_clock)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=2, base_delay=0.0, sleep=no_sleep)


@pytest.fixture
def make_service(rate_limiter, retry_policy) -> Callable[..., GenerationService]:
    """
    Factory building a GenerationService over stub providers.

    Usage:
        service = make_service([StubProvider(responses=[questions_json()])])
    """
    def factory(providers, question_limit: int = 5, explanation_limit: int = 10,
                window: float = 3600.0, max_question_count: int = 20) -> GenerationService:
        policies = {
            TaskKind.QUESTION_SET: TaskPolicy(
                rate_limit=RateLimitPolicy(limit=question_limit, window=window),
                max_output_tokens=4096,
            ),
            TaskKind.CONCEPT_EXPLANATION: TaskPolicy(
                rate_limit=RateLimitPolicy(limit=explanation_limit, window=window),
                max_output_tokens=2048,
            ),
        }
        return GenerationService(
            orchestrator=FallbackOrchestrator(providers, retry_policy),
            rate_limiter=rate_limiter,
            policies=policies,
            max_question_count=max_question_count,
            provider_retry_after=60,
        )
    return factory


@pytest.fixture
def question_payload() -> dict:
    return {"role": "Frontend Developer", "experience": "2", "topics": "React, Hooks", "count": 5}
