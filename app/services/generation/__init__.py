"""
AI Generation Orchestration Package

Architecture:
- generation_service.py: Entry point (validation, quota, result tagging)
- orchestrator.py: Provider fallback chain
- retry.py: Bounded retry with linear back-off
- providers.py: Gemini / Groq adapters behind one invoke() contract
- normalizer.py: Raw model text -> validated structured data
- rate_limiter.py: Fixed-window per-user quotas
"""

from .generation_service import GenerationService, build_generation_service, classify_failure
from .normalizer import normalize
from .orchestrator import FallbackOrchestrator
from .providers import GeminiAdapter, GroqAdapter, ProviderAdapter, build_providers
from .rate_limiter import InMemoryRateLimiter, RateLimiter
from .retry import RetryPolicy

__all__ = [
    'GenerationService',
    'build_generation_service',
    'classify_failure',
    'normalize',
    'FallbackOrchestrator',
    'ProviderAdapter',
    'GeminiAdapter',
    'GroqAdapter',
    'build_providers',
    'RateLimiter',
    'InMemoryRateLimiter',
    'RetryPolicy',
]
