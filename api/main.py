"""
FastAPI application for the service taxonomy import system.

Wires the import, taxonomy and validation routers plus the progress
WebSocket, and maps TaxonomyError kinds onto HTTP status codes.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

import redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.config import settings, ensure_temp_dir
from api.dependencies import engine, SessionLocal
from api.routers import import_router, taxonomy, validation, websocket
from api.schemas.common import ErrorResponse, HealthCheckResponse
from backend.models import Base
from services.errors import InternalError, StoreError, TaxonomyError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# TaxonomyError kind -> HTTP status; anything else is a client error
ERROR_STATUS = {
    StoreError.kind: status.HTTP_503_SERVICE_UNAVAILABLE,
    InternalError.kind: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.API_TITLE} v{settings.API_VERSION}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[-1]}")

    # Alembic owns migrations in production; this only covers fresh databases
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.error(f"Could not create taxonomy tables: {e}")

    ensure_temp_dir()
    yield
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS
)


def _error_response(request: Request, code: int, error: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=code,
        content=ErrorResponse(error=error, detail=detail, path=str(request.url)).model_dump(mode="json")
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return _error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error",
        {"message": str(exc)} if settings.DEBUG else None
    )


@app.exception_handler(TaxonomyError)
async def taxonomy_exception_handler(request: Request, exc: TaxonomyError):
    """Map import, store and internal errors raised inside endpoints."""
    code = ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    logger.error(f"{exc.kind} error on {request.url.path}: {exc}")
    return _error_response(request, code, exc.message, exc.to_dict())


app.include_router(import_router.router, prefix=settings.API_PREFIX)
app.include_router(taxonomy.router, prefix=settings.API_PREFIX)
app.include_router(validation.router, prefix=settings.API_PREFIX)
app.include_router(websocket.router)


def _database_status() -> str:
    try:
        with SessionLocal() as session:
            session.execute(text('SELECT 1'))
        return 'connected'
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return 'disconnected'


def _redis_status() -> str:
    try:
        redis.Redis.from_url(settings.REDIS_URL).ping()
        return 'connected'
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return 'disconnected'


def _worker_status() -> str:
    from tasks.celery_app import celery_app

    try:
        workers = celery_app.control.inspect(timeout=1.0).ping() or {}
    except Exception as e:
        # Broker errors surface as transport-specific exception types
        logger.error(f"Celery health check failed: {e}")
        return 'unknown'
    return f'active ({len(workers)} workers)' if workers else 'no workers'


@app.get('/health', response_model=HealthCheckResponse, tags=['health'])
async def health_check():
    """
    Report database, Redis and worker connectivity.

    A lost database makes the service unhealthy; Redis or workers missing
    only degrade it (imports queue up but progress is not streamed).
    """
    components = {
        'database': _database_status(),
        'redis': _redis_status(),
        'celery': _worker_status()
    }

    if components['database'] != 'connected':
        overall = 'unhealthy'
    elif components['redis'] != 'connected' or components['celery'] == 'no workers':
        overall = 'degraded'
    else:
        overall = 'healthy'

    return HealthCheckResponse(
        status=overall,
        timestamp=datetime.utcnow(),
        version=settings.API_VERSION,
        **components
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info(f"{request.method} {request.url.path} - {response.status_code}")
    return response


if __name__ == '__main__':
    import uvicorn

    uvicorn.run(
        'api.main:app',
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower()
    )
