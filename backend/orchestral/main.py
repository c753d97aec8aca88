"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Callable

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orchestral.core.config import settings
from orchestral.core.exceptions import AppError, ValidationError
from orchestral.core.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)
from orchestral.core.metrics import MetricsMiddleware
from orchestral.api import chat, health

# Configure structured logging
configure_logging(
    log_level=settings.log_level,
    json_format=settings.log_format == "json",
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "Starting Orchestral backend...",
        extra={"version": settings.version, "environment": settings.environment},
    )
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is not set; chat requests will fail")

    yield

    logger.info("Shutting down Orchestral backend...")


# Create FastAPI app
app = FastAPI(
    title="Orchestral API",
    description="Chat over multiple knowledge sources with cited answers",
    version=settings.version,
    lifespan=lifespan,
)


# ============ Exception Handlers ============


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle application errors with structured response."""
    if exc.http_status >= 500:
        logger.error(f"{exc.code.value}: {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(include_details=not settings.is_production),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies as VALIDATION_ERROR (400)."""
    error = ValidationError(
        message="Request validation failed",
        details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]},
    )
    return await app_error_handler(request, error)


# ============ Middleware ============


# Add metrics middleware (outermost to capture all requests)
app.add_middleware(MetricsMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ Request Context Middleware ============


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Callable):
    """Add request context for logging."""
    request_id = set_request_context(request.headers.get("X-Request-ID"))
    request.state.request_id = request_id

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        clear_request_context()


# ============ Include Routers ============

app.include_router(health.router)
app.include_router(chat.router, prefix="/api")

# Versioned routes (v1) - same endpoints under /api/v1 prefix
v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health.router, tags=["v1"])
v1_router.include_router(chat.router, tags=["v1"])
app.include_router(v1_router)


# ============ Root Endpoint ============


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Orchestral API",
        "version": settings.version,
        "status": "running",
        "environment": settings.environment,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orchestral.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
