from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from citypulse.config import settings
from citypulse.exceptions import CityPulseError, RateLimited
from citypulse.logging_config import configure_logging
from citypulse.metrics import metrics_endpoint
from citypulse.middleware.logging_middleware import RequestLoggingMiddleware
from citypulse.middleware.rate_limiter import build_rate_limiters
from citypulse.routers import admin, auth, chat, credits, reports, rewards, uploads
from citypulse.schemas.common import ErrorResponse
from citypulse.services.chat import support_message

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure structured logging before anything else
    configure_logging()

    # Redis is only needed when the shared rate-limit backend is selected
    app.state.redis = None
    if settings.rate_limit_backend == "redis":
        app.state.redis = aioredis.from_url(
            settings.redis_url, encoding="utf-8", decode_responses=True
        )
    app.state.rate_limiters = build_rate_limiters(settings, app.state.redis)
    log.info("rate_limiters_ready", backend=settings.rate_limit_backend)

    try:
        yield
    finally:
        blob_store = getattr(app.state, "blob_store", None)
        if blob_store is not None:
            await blob_store.aclose()
        if app.state.redis is not None:
            await app.state.redis.aclose()


app = FastAPI(title="CityPulse API", version="0.1.0", lifespan=lifespan)

# Register request logging middleware (runs on every request)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(CityPulseError)
async def citypulse_error_handler(request: Request, exc: CityPulseError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        log.error("request_error", error_type=type(exc).__name__, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message, detail=exc.details).model_dump(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error=f"{location}: {message}" if location else message).model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Internals are logged, never returned
    log.error("unhandled_error", error_type=type(exc).__name__, exc_info=exc)
    return JSONResponse(status_code=500, content=ErrorResponse(error=support_message()).model_dump())


app.include_router(auth.router)
app.include_router(credits.router)
app.include_router(reports.router)
app.include_router(rewards.router)
app.include_router(chat.router)
app.include_router(uploads.router)
app.include_router(admin.router)

# Prometheus metrics endpoint
app.get("/metrics")(metrics_endpoint)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
