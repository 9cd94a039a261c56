from __future__ import annotations

import logging
import time
from typing import Callable, List, Sequence

from app.core.exceptions import (
    AllProvidersFailedError,
    GenerationAttemptError,
    ProviderFailure,
)
from app.schemas.generation import ExpectedShape, NormalizedResult, PromptSpec, RetryAttempt
from app.services.generation.normalizer import normalize
from app.services.generation.providers import ProviderAdapter
from app.services.generation.retry import RetryPolicy

logger = logging.getLogger(__name__)


class FallbackOrchestrator:
    """
    Tries providers in fixed priority order until one yields a normalized result.

    The retried unit for each provider is "invoke, then normalize", so a
    malformed response is regenerated before moving on. Providers are
    independent failure domains: any failure, fatal or exhausted, only moves
    the chain to the next provider. First success wins.
    """

    def __init__(self, providers: Sequence[ProviderAdapter], retry_policy: RetryPolicy,
                 normalizer: Callable[[str, ExpectedShape], object] = normalize):
        self.providers: List[ProviderAdapter] = list(providers)
        self.retry_policy = retry_policy
        self._normalize = normalizer

    @property
    def provider_names(self) -> List[str]:
        return [provider.name for provider in self.providers]

    async def generate(self, prompt: PromptSpec, max_output_tokens: int) -> NormalizedResult:
        """
        Run the fallback chain for one prompt.

        Raises:
            AllProvidersFailedError: With one ProviderFailure per provider, in
                chain order (empty when no provider is configured).
        """
        failures: List[ProviderFailure] = []

        for provider in self.providers:
            attempts: List[RetryAttempt] = []

            async def _attempt(provider: ProviderAdapter = provider) -> NormalizedResult:
                result = await provider.invoke(prompt, max_output_tokens)
                try:
                    data = self._normalize(result.text, prompt.shape)
                except GenerationAttemptError as e:
                    e.provider = result.identifier
                    raise
                return NormalizedResult(data=data, provider=result.identifier)

            start_time = time.perf_counter()
            try:
                normalized = await self.retry_policy.call(_attempt, label=provider.name, attempts=attempts)
            except GenerationAttemptError as e:
                failures.append(ProviderFailure(
                    provider=provider.name,
                    kind=e.kind,
                    message=e.message,
                    attempts=len(attempts),
                    retry_after=e.retry_after,
                ))
                logger.warning(
                    f"Provider '{provider.name}' exhausted after {len(attempts)} attempt(s): "
                    f"{e.kind.value}. Falling back."
                )
                continue

            elapsed = time.perf_counter() - start_time
            logger.info(f"Generated with {normalized.provider} in {elapsed:.2f}s")
            return normalized

        if not failures:
            logger.error("No AI provider configured; nothing to call")
        else:
            logger.error(f"All providers failed: {[(f.provider, f.kind.value) for f in failures]}")
        raise AllProvidersFailedError(failures)
