from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from promptopt.config import settings
from promptopt.database import init_db
from promptopt.errors import DispatchError, RateLimitRejected, ValidationError
from promptopt.observability.tracing import configure_tracing, is_tracing_enabled
from promptopt.routers import admin, optimize, providers, settings as settings_router, usage

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic"""
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    configure_tracing(settings)
    init_db()

    yield

    logger.info("Shutting down application")

app = FastAPI(
    title=settings.APP_NAME,
    description="Usage quotas, rate limiting and multi-provider dispatch for prompt optimization",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    headers = None
    if isinstance(exc, RateLimitRejected):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    # loc is ("body", "promptPayload") or ("query", "days")
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    error = ValidationError(".".join(loc) or "request", first.get("msg", "Invalid request"))
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "kind": "InternalError",
            "detail": str(exc) if settings.DEBUG else "An error occurred",
        },
    )


# Health check
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "tracing": is_tracing_enabled(),
    }

# Include API routers
app.include_router(
    optimize.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["optimize"],
)
app.include_router(
    usage.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["usage"],
)
app.include_router(
    providers.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["providers"],
)
app.include_router(
    settings_router.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["settings"],
)
app.include_router(
    admin.router,
    prefix=f"{settings.API_V1_PREFIX}/admin",
    tags=["admin"],
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
