import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.ai import ai_router
from app.core.config import settings
from app.core.exceptions import (
    global_exception_handler,
    http_exception_handler,
    request_validation_exception_handler,
)
from app.core.logger import set_correlation_id, setup_logger
from app.services.generation import InMemoryRateLimiter, build_generation_service

# Setup logger with fresh log file on startup
setup_logger(
    log_level=logging.DEBUG if settings.DEBUG_MODE else logging.INFO,
    clear_log=True,
    use_json=settings.LOG_JSON,
    max_bytes=settings.LOG_FILE_MAX_BYTES,
    backup_count=settings.LOG_BACKUP_COUNT,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup: AI Interview Prep generation service")
    rate_limiter = InMemoryRateLimiter(sweep_interval=settings.RATE_LIMIT_WINDOW_SECONDS)
    rate_limiter.start()
    service = build_generation_service(rate_limiter)
    app.state.rate_limiter = rate_limiter
    app.state.generation_service = service

    if settings.PROVIDER_STARTUP_CHECK:
        await service.check_providers()

    try:
        yield
    finally:
        await rate_limiter.stop()
        logger.info("Application shutdown")


app = FastAPI(
    title="AI Interview Prep",
    description="AI generation of interview questions and concept explanations.",
    version="1.0.0",
    lifespan=lifespan
)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for simplicity in development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_correlation_id(correlation_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


# Include routers
app.include_router(ai_router, prefix="/api/v1", tags=["ai"])


@app.get("/health")
async def health():
    return {"status": "ok"}
