"""LaborHire service - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .logging_config import configure_logging, get_logger
from .rate_limit import limiter
from .routes import admin_router, wallets_router

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.debug)
    logger.info(f"Starting LaborHire service (debug={settings.debug})")
    yield
    logger.info("Shutting down LaborHire service")


app = FastAPI(
    title="LaborHire Service",
    description="Server-side functions for the LaborHire marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Errors go out as ``{"error": ...}``, the shape the browser client reads."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    # Credentials cannot be combined with a wildcard origin
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=settings.cors_headers,
)

# Include routers
app.include_router(admin_router)
app.include_router(wallets_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "laborhire-service",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    from .database import PROFILES_TABLE, get_supabase_client

    db_status = "disconnected"
    try:
        db = get_supabase_client()
        db.table(PROFILES_TABLE).select("id").limit(1).execute()
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return {
        "status": overall_status,
        "database": db_status,
    }
