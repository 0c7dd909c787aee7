"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rollcall.api.deps import get_services
from rollcall.api.v1.router import api_router
from rollcall.core.config import settings
from rollcall.core.exceptions import StoreUnavailable
from rollcall.core.logging_config import get_logger, setup_logging
from rollcall.core.rate_limit import limiter
from rollcall.middleware import LoggingMiddleware
from rollcall.services.container import Services, build_services

# Initialize structured logging
setup_logging(level=settings.LOG_LEVEL, json_logs=settings.ENVIRONMENT == "production")
logger = get_logger(__name__)

if settings.ENVIRONMENT == "production":
    settings.validate_production_config()

logger.info(
    "application_starting",
    app_title=settings.APP_TITLE,
    app_version=settings.APP_VERSION,
    environment=settings.ENVIRONMENT,
    store_backend=settings.STORE_BACKEND,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Timers and live listeners belong to the serving event loop
    services = build_services(settings)
    app.state.services = services
    try:
        yield
    finally:
        await services.shutdown()
        logger.info("application_stopped")


app = FastAPI(
    title=settings.APP_TITLE,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(LoggingMiddleware)


@app.middleware("http")
async def add_api_version_header(request: Request, call_next):
    """Add X-API-Version header to all responses for version tracking."""
    response = await call_next(request)
    response.headers["X-API-Version"] = settings.APP_VERSION
    return response


# Bearer tokens normally; the cookie fallback needs credentials allowed
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """
    Health check endpoint.

    Returns:
        - status: "healthy" or "unhealthy"
        - environment: Current environment setting
        - store: Backend name, reachability and live listener count
        - consoles: Number of owner consoles currently counting down

    Returns 503 if the store is unreachable.
    """
    health_status = {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "store": {
            "backend": type(services.store).__name__,
            "status": "connected",
            "listeners": services.store.listener_count,
        },
        "consoles": len(services.consoles),
    }

    try:
        services.store.ping()
    except StoreUnavailable as e:
        health_status["status"] = "unhealthy"
        health_status["store"]["status"] = f"error: {str(e)}"
        logger.error("health_check_failed", error=str(e))
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
