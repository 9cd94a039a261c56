"""
Custom exceptions for the AI Interview Prep generation service.

This module defines a hierarchy of exceptions to provide specific error handling
and stable error kinds for callers. Two vocabularies live here:

- ``FailureKind``: why a single provider attempt failed (internal).
- ``ErrorKind``: the one kind string a caller sees (external).
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from fastapi import Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ============================================================================
# Error Kinds
# ============================================================================

class FailureKind(str, Enum):
    """Classification of a single provider attempt failure."""
    AUTH_ERROR = "AuthError"
    QUOTA_EXCEEDED = "QuotaExceeded"
    RATE_LIMITED = "RateLimited"
    TIMEOUT = "Timeout"
    UNAVAILABLE = "Unavailable"
    UNKNOWN = "Unknown"
    PARSE_ERROR = "ParseError"


RETRYABLE_KINDS = frozenset({
    FailureKind.QUOTA_EXCEEDED,
    FailureKind.RATE_LIMITED,
    FailureKind.TIMEOUT,
    FailureKind.UNAVAILABLE,
    FailureKind.PARSE_ERROR,
})


class ErrorKind(str, Enum):
    """Error kinds exposed to API callers."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_API_KEY = "INVALID_API_KEY"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    PARSE_ERROR = "PARSE_ERROR"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    NO_PROVIDER_CONFIGURED = "NO_PROVIDER_CONFIGURED"
    GENERATION_FAILED = "GENERATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


FAILURE_TO_ERROR_KIND = {
    FailureKind.AUTH_ERROR: ErrorKind.INVALID_API_KEY,
    FailureKind.QUOTA_EXCEEDED: ErrorKind.QUOTA_EXCEEDED,
    FailureKind.RATE_LIMITED: ErrorKind.API_RATE_LIMIT,
    FailureKind.TIMEOUT: ErrorKind.PROVIDER_UNAVAILABLE,
    FailureKind.UNAVAILABLE: ErrorKind.PROVIDER_UNAVAILABLE,
    FailureKind.PARSE_ERROR: ErrorKind.PARSE_ERROR,
    FailureKind.UNKNOWN: ErrorKind.GENERATION_FAILED,
}

HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.INVALID_API_KEY: 502,
    ErrorKind.API_RATE_LIMIT: 503,
    ErrorKind.QUOTA_EXCEEDED: 503,
    ErrorKind.PARSE_ERROR: 502,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
    ErrorKind.NO_PROVIDER_CONFIGURED: 503,
    ErrorKind.GENERATION_FAILED: 502,
    ErrorKind.INTERNAL_ERROR: 500,
}

MESSAGES_BY_KIND = {
    ErrorKind.INVALID_API_KEY: "AI provider credentials were rejected. Please contact support.",
    ErrorKind.API_RATE_LIMIT: "AI providers are busy right now. Please try again shortly.",
    ErrorKind.QUOTA_EXCEEDED: "AI provider quota is exhausted. Please try again later.",
    ErrorKind.PARSE_ERROR: "The AI response could not be understood. Please try again.",
    ErrorKind.PROVIDER_UNAVAILABLE: "AI providers are unreachable. Please try again.",
    ErrorKind.NO_PROVIDER_CONFIGURED: "AI generation is not configured. Please contact support.",
    ErrorKind.GENERATION_FAILED: "Failed to generate content. Please try again.",
}


# ============================================================================
# Custom Exception Classes
# ============================================================================

class AppError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Exception raised when configuration is invalid or missing."""
    pass


class GenerationAttemptError(AppError):
    """A single attempt against one provider failed."""
    def __init__(
        self,
        message: str,
        kind: FailureKind,
        provider: str = "",
        retry_after: Optional[float] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.kind = kind
        self.provider = provider
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ProviderError(GenerationAttemptError):
    """Exception raised when a provider call fails (auth, quota, network...)."""
    pass


class ParseError(GenerationAttemptError):
    """Exception raised when model output cannot be coerced to the expected shape."""
    def __init__(self, message: str, excerpt: str = "", provider: str = ""):
        super().__init__(message, FailureKind.PARSE_ERROR, provider=provider,
                         details={"excerpt": excerpt})
        self.excerpt = excerpt


@dataclass
class ProviderFailure:
    """One provider's terminal failure inside a fallback chain."""
    provider: str
    kind: FailureKind
    message: str
    attempts: int = 1
    retry_after: Optional[float] = None


class AllProvidersFailedError(AppError):
    """Exception raised when every provider in the chain failed (or none is configured)."""
    def __init__(self, failures: List[ProviderFailure]):
        self.failures = list(failures)
        if self.failures:
            summary = "; ".join(f"{f.provider}: {f.kind.value}" for f in self.failures)
            message = f"All providers failed ({summary})"
        else:
            message = "No AI provider is configured"
        super().__init__(message, {"failures": [
            {"provider": f.provider, "kind": f.kind.value} for f in self.failures
        ]})

    @property
    def nothing_configured(self) -> bool:
        return not self.failures


class GenerationError(AppError):
    """Exception carrying an external error kind back to the service boundary."""
    kind: ErrorKind = ErrorKind.GENERATION_FAILED

    def __init__(self, message: str, retry_after: Optional[float] = None,
                 details: Optional[dict] = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class InvalidRequestError(GenerationError):
    """Exception raised when the request payload is missing or malformed."""
    kind = ErrorKind.VALIDATION_ERROR


class RateLimitExceededError(GenerationError):
    """Exception raised when the requester has used up their quota for this window."""
    kind = ErrorKind.RATE_LIMIT_EXCEEDED


# ============================================================================
# FastAPI Exception Handlers
# ============================================================================

def _failure_body(kind: ErrorKind, message: str) -> dict:
    return {"success": False, "message": message, "error": kind.value, "retry_after": None}


async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=_failure_body(ErrorKind.INTERNAL_ERROR, "Internal Server Error"),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(f"HTTP exception: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Malformed request body: {exc.errors()}")
    return JSONResponse(
        status_code=HTTP_STATUS_BY_KIND[ErrorKind.VALIDATION_ERROR],
        content=_failure_body(ErrorKind.VALIDATION_ERROR, "Request body must be a JSON object"),
    )
