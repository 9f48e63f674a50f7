"""
FastAPI application for the voters registry.

Serves registration, vote submission, country rankings and global stats.
Identities are verified upstream; the authentication gateway forwards the
verified email in the IDENTITY_HEADER header.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from voters.shared import (
    IdentityNotRegistered,
    VoteConflict,
    NotAcceptable,
    StoreError,
)
from .config import settings
from .models import (
    VoteSubmission,
    VoteRecordResponse,
    CountryResponse,
    StatsResponse,
    HealthResponse,
    ErrorResponse,
)
from .cache import AggregateCache
from .engine import VoteIngestionEngine
from .publisher import publisher
from .database import database

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
vote_counter = Counter(
    "votes_submitted_total",
    "Total number of votes finalized",
    ["nationality"]
)
vote_errors = Counter(
    "vote_errors_total",
    "Total number of vote submission errors",
    ["error_type"]
)
registrations = Counter(
    "registrations_total",
    "Total number of registration requests"
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Redis client for the shared rate limit storage, when configured
redis_client: Optional[redis.Redis] = None

# Rate limiter
limiter = Limiter(key_func=get_remote_address, storage_uri=settings.RATE_LIMIT_STORAGE_URI)

API_PREFIX = f"/api/{settings.API_VERSION}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    try:
        if settings.uses_redis_rate_limit:
            global redis_client
            redis_client = redis.from_url(
                settings.RATE_LIMIT_STORAGE_URI,
                encoding="utf-8",
                decode_responses=True
            )
            await redis_client.ping()
            logger.info("Redis connection established")

        await database.initialize()
        await publisher.initialize()

        cache = await AggregateCache.build(
            database.scan_all(),
            recent_limit=settings.RECENT_VOTES_LIMIT,
            public_fields=settings.PUBLIC_FIELDS
        )

        app.state.store = database
        app.state.cache = cache
        app.state.engine = VoteIngestionEngine(
            database,
            cache,
            publisher,
            service_url=settings.SERVICE_URL
        )

        logger.info(f"{settings.SERVICE_NAME} started successfully")

    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")

    try:
        if redis_client:
            await redis_client.close()
        await publisher.close()
        await database.close()
        logger.info(f"{settings.SERVICE_NAME} shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI app
app = FastAPI(
    title="Voters Registry API",
    description="API for registering voters, submitting votes and reading rankings",
    version=settings.API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    start_time = time.perf_counter()
    response = await call_next(request)

    # Route templates keep the label set bounded (no raw country codes)
    route = request.scope.get("route")
    request_duration.labels(
        method=request.method,
        endpoint=getattr(route, "path", request.url.path),
        status=response.status_code
    ).observe(time.perf_counter() - start_time)

    return response


def get_identity(request: Request) -> Optional[str]:
    """Verified identity forwarded by the authentication gateway, if any."""
    identity = request.headers.get(settings.IDENTITY_HEADER)
    if identity and identity.strip():
        return identity.strip()
    return None


def require_identity(identity: Optional[str] = Depends(get_identity)) -> str:
    """Reject requests without a verified identity."""
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    return identity


def get_engine(request: Request) -> VoteIngestionEngine:
    return request.app.state.engine


def get_cache(request: Request) -> AggregateCache:
    return request.app.state.cache


@app.get("/")
async def root(request: Request, identity: Optional[str] = Depends(get_identity)):
    """Root endpoint with API information and the caller's vote."""
    info = {
        "service": settings.SERVICE_NAME,
        "version": settings.API_VERSION,
        "status": "running",
        "authProviders": settings.AUTH_PROVIDERS,
        "endpoints": {
            "register": f"{API_PREFIX}/registrations",
            "submit_vote": f"{API_PREFIX}/vote",
            "country": f"{API_PREFIX}/votes/{{country_code}}",
            "stats": f"{API_PREFIX}/stats",
            "health": f"{API_PREFIX}/health",
            "metrics": "/metrics"
        }
    }
    if identity:
        try:
            record = await request.app.state.store.get(identity)
        except StoreError as e:
            logger.error(f"Error loading vote for root endpoint: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error"
            )
        info["vote"] = record.to_dict() if record else None
    return info


@app.post(
    f"{API_PREFIX}/registrations",
    response_model=VoteRecordResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing verified identity"},
        500: {"model": ErrorResponse, "description": "Internal server error"}
    }
)
async def register(
    identity: str = Depends(require_identity),
    engine: VoteIngestionEngine = Depends(get_engine)
) -> VoteRecordResponse:
    """
    Register the verified caller.

    Idempotent: an identity that is already registered gets its existing
    record (and id) back.
    """
    try:
        record = await engine.register(identity)
        registrations.inc()
        return VoteRecordResponse(**record.to_dict())

    except StoreError as e:
        logger.error(f"Error registering identity: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )


@app.get(
    f"{API_PREFIX}/me",
    response_model=VoteRecordResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing verified identity"},
        404: {"model": ErrorResponse, "description": "Identity not registered"}
    }
)
async def get_own_vote(
    request: Request,
    identity: str = Depends(require_identity)
) -> VoteRecordResponse:
    """Get the caller's own vote record."""
    try:
        record = await request.app.state.store.get(identity)
    except StoreError as e:
        logger.error(f"Error loading own vote: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Identity not registered"
        )
    return VoteRecordResponse(**record.to_dict())


@app.put(
    f"{API_PREFIX}/vote",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={
        401: {"model": ErrorResponse, "description": "Missing verified identity"},
        403: {"model": ErrorResponse, "description": "Identity mismatch or not registered"},
        406: {"model": ErrorResponse, "description": "Required consent missing"},
        409: {"model": ErrorResponse, "description": "Wrong id or vote already finalized"},
        429: {"description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Internal server error"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def submit_vote(
    request: Request,
    vote: VoteSubmission,
    identity: str = Depends(require_identity),
    engine: VoteIngestionEngine = Depends(get_engine)
) -> Response:
    """
    Finalize the caller's vote.

    - **email**: must match the verified identity
    - **id**: the id returned at registration
    - **nationality**: country code the vote counts for
    - consent fields must be set to "on"

    Responds 204 once the vote is durably stored.
    """
    if vote.email != identity:
        vote_errors.labels(error_type="identity_mismatch").inc()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vote does not belong to the authenticated identity"
        )

    try:
        record = await engine.submit(identity, vote.to_payload())

    except IdentityNotRegistered:
        vote_errors.labels(error_type="not_registered").inc()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Identity not registered"
        )
    except VoteConflict:
        vote_errors.labels(error_type="conflict").inc()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Vote id mismatch or vote already registered"
        )
    except NotAcceptable as e:
        vote_errors.labels(error_type="not_acceptable").inc()
        raise HTTPException(
            status_code=status.HTTP_406_NOT_ACCEPTABLE,
            detail=str(e)
        )
    except StoreError as e:
        vote_errors.labels(error_type="store_error").inc()
        logger.error(f"Store error submitting vote: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record vote"
        )
    except Exception as e:
        vote_errors.labels(error_type="internal_error").inc()
        logger.error(f"Error submitting vote: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )

    vote_counter.labels(nationality=record.nationality).inc()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get(
    f"{API_PREFIX}/votes/{{country_code}}",
    response_model=CountryResponse,
    responses={
        404: {"model": ErrorResponse, "description": "No votes for this country"}
    }
)
async def get_country(
    country_code: str,
    cache: AggregateCache = Depends(get_cache)
) -> CountryResponse:
    """
    Get the aggregate of a country.

    - **country_code**: Country code, case insensitive
    """
    country = cache.find_country(country_code.upper())
    if country is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Country {country_code} not found"
        )
    return CountryResponse(**country.to_dict())


@app.get(f"{API_PREFIX}/stats", response_model=StatsResponse)
async def get_stats(cache: AggregateCache = Depends(get_cache)) -> StatsResponse:
    """Get the global total and the country ranking."""
    return StatsResponse(**cache.snapshot_stats().to_dict())


@app.get(
    f"{API_PREFIX}/data",
    response_model=list[VoteRecordResponse],
    responses={
        401: {"model": ErrorResponse, "description": "Missing verified identity"},
        403: {"model": ErrorResponse, "description": "Not the administrator"},
        500: {"model": ErrorResponse, "description": "Internal server error"}
    }
)
async def export_data(
    request: Request,
    identity: str = Depends(require_identity)
) -> list[VoteRecordResponse]:
    """Export every stored record, finalized or not. Administrator only."""
    if not settings.ADMIN_IDENTITY or identity != settings.ADMIN_IDENTITY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden"
        )

    try:
        return [
            VoteRecordResponse(**record.to_dict())
            async for record in request.app.state.store.scan_all()
        ]
    except StoreError as e:
        logger.error(f"Error exporting votes: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )


@app.get(
    f"{API_PREFIX}/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check() -> HealthResponse:
    """
    Check health of the service and its dependencies.

    Verifies connections to:
    - PostgreSQL
    - RabbitMQ
    - Redis (only when used for rate limiting)

    Returns overall health status and individual service statuses.
    """
    services = {}

    # Check PostgreSQL
    try:
        postgres_healthy = await database.check_health()
        services["postgresql"] = "connected" if postgres_healthy else "disconnected"
    except Exception as e:
        logger.error(f"PostgreSQL health check error: {e}")
        services["postgresql"] = "error"

    # Check RabbitMQ
    try:
        rabbitmq_healthy = await publisher.check_health()
        services["rabbitmq"] = "connected" if rabbitmq_healthy else "disconnected"
    except Exception as e:
        logger.error(f"RabbitMQ health check error: {e}")
        services["rabbitmq"] = "error"

    # Check Redis
    if redis_client is not None:
        try:
            await redis_client.ping()
            services["redis"] = "connected"
        except Exception as e:
            logger.error(f"Redis health check error: {e}")
            services["redis"] = "disconnected"

    all_healthy = all(
        service_status == "connected" for service_status in services.values()
    )

    overall_status = "healthy" if all_healthy else "unhealthy"
    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    response = HealthResponse(
        status=overall_status,
        services=services,
        timestamp=datetime.now(timezone.utc)
    )

    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json")
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def run():
    """Console entry point."""
    import uvicorn

    # A single worker: the aggregate cache and country locks are per process
    uvicorn.run(
        "voters.ingestion_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1,
        log_level="info"
    )


if __name__ == "__main__":
    run()
