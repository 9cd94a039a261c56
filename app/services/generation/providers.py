"""
Provider adapters.

Each adapter hides one hosted LLM behind ``invoke(prompt_spec, max_output_tokens)``
and converts every SDK/transport failure into a ``ProviderError`` with a
``FailureKind``. An adapter may carry several near-equivalent models; they
are tried in order and the last error is surfaced if all fail.
"""
from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Dict, List, Optional, Sequence

import groq
import httpx
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from langchain_core.messages import HumanMessage

from app.core.config import Settings, settings
from app.core.exceptions import ConfigurationError, FailureKind, ProviderError
from app.core.llm import get_chat_groq, get_genai_client
from app.schemas.generation import ExpectedShape, PromptSpec, ProviderResult

logger = logging.getLogger(__name__)

_AUTH_MARKERS = ("api key not valid", "invalid api key", "api_key_invalid", "permission_denied", "unauthorized")
_QUOTA_MARKERS = ("quota", "billing", "per day", "daily limit", "insufficient")
_THROTTLE_MARKERS = ("resource_exhausted", "rate limit", "too many requests")
_TIMEOUT_MARKERS = ("timed out", "timeout", "deadline")
_UNAVAILABLE_MARKERS = ("unavailable", "overloaded", "connection", "bad gateway")


def classify_status(status: Optional[int], message: str) -> FailureKind:
    """Map an HTTP status and/or provider error message to a failure kind."""
    text = (message or "").lower()
    if status in (401, 403) or any(marker in text for marker in _AUTH_MARKERS):
        return FailureKind.AUTH_ERROR
    if status == 429 or any(marker in text for marker in _THROTTLE_MARKERS):
        if any(marker in text for marker in _QUOTA_MARKERS):
            return FailureKind.QUOTA_EXCEEDED
        return FailureKind.RATE_LIMITED
    if status in (408, 504) or any(marker in text for marker in _TIMEOUT_MARKERS):
        return FailureKind.TIMEOUT
    if (status is not None and status >= 500) or any(marker in text for marker in _UNAVAILABLE_MARKERS):
        return FailureKind.UNAVAILABLE
    return FailureKind.UNKNOWN


def parse_retry_after(exception: Exception) -> Optional[float]:
    """Extract a provider-suggested wait (seconds) from an error, if it carries one."""
    response = getattr(exception, 'response', None)
    headers = getattr(response, 'headers', None) or {}
    value = headers.get('Retry-After') or headers.get('retry-after')
    if value:
        if value.isdigit():
            return float(value)
        try:
            return max(0.0, (parsedate_to_datetime(value) - datetime.now(timezone.utc)).total_seconds())
        except (TypeError, ValueError):
            pass

    error_str = str(exception)
    retry_match = re.search(r'retry in ([\d.]+)\s*s', error_str, re.IGNORECASE)
    if retry_match:
        return float(retry_match.group(1))
    delay_match = re.search(r"['\"]retryDelay['\"]:\s*['\"]([\d.]+)s['\"]", error_str)
    if delay_match:
        return float(delay_match.group(1))
    return None


class ProviderAdapter(ABC):
    """Uniform "generate text for prompt" contract over one LLM provider."""

    name: str = "provider"

    def __init__(self, models: Sequence[str], temperature: float = 0.5, timeout: float = 30.0):
        if not models:
            raise ConfigurationError(f"Provider '{self.name}' has no models configured")
        self.models: List[str] = list(models)
        self.temperature = temperature
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}(models={self.models})"

    @abstractmethod
    async def _generate(self, model: str, prompt: PromptSpec, max_output_tokens: int) -> str:
        """Call the provider once with one model and return its raw text."""

    def classify_error(self, error: Exception, model: str) -> ProviderError:
        """Translate an SDK/transport exception into a ProviderError."""
        if isinstance(error, httpx.TimeoutException):
            kind = FailureKind.TIMEOUT
        elif isinstance(error, httpx.TransportError):
            kind = FailureKind.UNAVAILABLE
        else:
            kind = classify_status(getattr(error, 'status_code', None), str(error))
        return ProviderError(
            f"{self.name}/{model}: {error}",
            kind,
            provider=f"{self.name}/{model}",
            retry_after=parse_retry_after(error),
        )

    async def invoke(self, prompt: PromptSpec, max_output_tokens: int) -> ProviderResult:
        """
        Generate raw text for ``prompt``, trying each configured model in order.

        Raises:
            ProviderError: The last model's failure when every model fails.
        """
        last_error: Optional[ProviderError] = None
        for model in self.models:
            identifier = f"{self.name}/{model}"
            try:
                text = await asyncio.wait_for(
                    self._generate(model, prompt, max_output_tokens),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                last_error = ProviderError(
                    f"{identifier} timed out after {self.timeout:.0f}s",
                    FailureKind.TIMEOUT,
                    provider=identifier,
                )
            except ProviderError as e:
                last_error = e
            except Exception as e:
                last_error = self.classify_error(e, model)
            else:
                logger.debug(f"{identifier} returned {len(text or '')} chars")
                return ProviderResult(text=text or "", provider=self.name, model=model)

            logger.warning(f"{identifier} failed with {last_error.kind.value}: {last_error.message[:200]}")
            # Every model shares one credential
            if last_error.kind is FailureKind.AUTH_ERROR:
                break

        raise last_error

    async def ping(self) -> bool:
        """Cheap connectivity probe used at startup. Never raises ProviderError."""
        probe = PromptSpec(instruction='Reply with the JSON array ["ok"] and nothing else.',
                           shape=ExpectedShape.QUESTION_ARRAY)
        try:
            result = await self.invoke(probe, max_output_tokens=16)
        except ProviderError as e:
            logger.error(f"❌ {self.name} connection test failed: {e.kind.value}")
            return False
        logger.info(f"✅ {self.name} connected successfully ({result.identifier})")
        return True


class GeminiAdapter(ProviderAdapter):
    """Google Gemini through the GenAI SDK (async client)."""

    name = "gemini"

    def __init__(self, models: Sequence[str], api_key: str = "", temperature: float = 0.5,
                 timeout: float = 30.0, client=None):
        super().__init__(models, temperature, timeout)
        if client is None:
            if not api_key:
                raise ConfigurationError("GEMINI_API_KEY is required for the Gemini provider")
            client = get_genai_client(api_key)
        self._client = client

    async def _generate(self, model: str, prompt: PromptSpec, max_output_tokens: int) -> str:
        config = genai_types.GenerateContentConfig(
            temperature=self.temperature,
            max_output_tokens=max_output_tokens,
            # Best-effort hint; the normalizer never relies on it
            response_mime_type="application/json",
        )
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=prompt.instruction,
            config=config,
        )
        return response.text or ""

    def classify_error(self, error: Exception, model: str) -> ProviderError:
        if isinstance(error, genai_errors.APIError):
            kind = classify_status(error.code, f"{error.status} {error.message}")
            return ProviderError(
                f"{self.name}/{model}: {error.code} {error.status}: {error.message}",
                kind,
                provider=f"{self.name}/{model}",
                retry_after=parse_retry_after(error),
            )
        return super().classify_error(error, model)


class GroqAdapter(ProviderAdapter):
    """Groq through LangChain's ChatGroq."""

    name = "groq"

    def __init__(self, models: Sequence[str], api_key: str = "", temperature: float = 0.5,
                 timeout: float = 30.0, chat_factory: Optional[Callable] = None):
        super().__init__(models, temperature, timeout)
        if chat_factory is None and not api_key:
            raise ConfigurationError("GROQ_API_KEY is required for the Groq provider")
        self._api_key = api_key
        self._chat_factory = chat_factory or get_chat_groq
        self._chats: Dict[str, object] = {}

    def _chat(self, model: str):
        if model not in self._chats:
            self._chats[model] = self._chat_factory(
                model=model,
                api_key=self._api_key,
                temperature=self.temperature,
                timeout=self.timeout,
            )
        return self._chats[model]

    async def _generate(self, model: str, prompt: PromptSpec, max_output_tokens: int) -> str:
        call_kwargs = {"max_tokens": max_output_tokens}
        # Groq JSON mode only produces objects, so arrays rely on the prompt alone
        if prompt.shape is ExpectedShape.EXPLANATION_OBJECT:
            call_kwargs["response_format"] = {"type": "json_object"}
        response = await self._chat(model).ainvoke(
            [HumanMessage(content=prompt.instruction)],
            **call_kwargs,
        )
        content = response.content
        return content if isinstance(content, str) else str(content)

    def classify_error(self, error: Exception, model: str) -> ProviderError:
        identifier = f"{self.name}/{model}"
        if isinstance(error, groq.APITimeoutError):
            kind = FailureKind.TIMEOUT
        elif isinstance(error, groq.APIConnectionError):
            kind = FailureKind.UNAVAILABLE
        elif isinstance(error, groq.APIStatusError):
            kind = classify_status(error.status_code, str(error))
        else:
            return super().classify_error(error, model)
        return ProviderError(f"{identifier}: {error}", kind, provider=identifier,
                             retry_after=parse_retry_after(error))


PROVIDER_REGISTRY = {
    GeminiAdapter.name: GeminiAdapter,
    GroqAdapter.name: GroqAdapter,
}


def build_providers(config: Settings = settings) -> List[ProviderAdapter]:
    """
    Build the fallback chain in ``PROVIDER_ORDER``.

    Providers without an API key are skipped entirely (not treated as failures).
    """
    credentials = {
        GeminiAdapter.name: (config.GEMINI_API_KEY, config.GEMINI_MODELS),
        GroqAdapter.name: (config.GROQ_API_KEY, config.GROQ_MODELS),
    }
    adapters: List[ProviderAdapter] = []
    for raw_name in config.PROVIDER_ORDER:
        name = raw_name.strip().lower()
        if name not in PROVIDER_REGISTRY:
            raise ConfigurationError(f"Unknown provider '{raw_name}' in PROVIDER_ORDER")
        api_key, models = credentials[name]
        if not api_key:
            logger.info(f"Skipping provider '{name}': no API key configured")
            continue
        adapters.append(PROVIDER_REGISTRY[name](
            models=models,
            api_key=api_key,
            temperature=config.GENERATION_TEMPERATURE,
            timeout=config.PROVIDER_TIMEOUT_SECONDS,
        ))
    logger.info(f"Provider chain: {[adapter.name for adapter in adapters] or 'empty'}")
    return adapters
