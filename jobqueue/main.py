from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url

from jobqueue.config.logging import get_logger, setup_logging
from jobqueue.config.settings import Settings, settings as default_settings
from jobqueue.infra.database import get_database
from jobqueue.v1.core.exceptions import (
    JobQueueException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_queue_exception_handler,
)
from jobqueue.v1.core.registries import job_registry
from jobqueue.v1.healthz import router as health_router
from jobqueue.v1.infra.jobs.registry_init import register_job_handlers
from jobqueue.v1.infra.jobs.repository import SqlAlchemyJobStore
from jobqueue.v1.infra.jobs.routes import cron_router
from jobqueue.v1.infra.jobs.routes import router as jobs_router

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging(settings)

    database = get_database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # SQLite has no migrations; Postgres schemas come from alembic
        if make_url(settings.database_url).get_backend_name() == "sqlite":
            await database.create_all()
        logger.info("Job queue started", environment=settings.environment)
        yield
        await database.close()

    app = FastAPI(
        title=settings.app_name,
        description="Durable background job queue driven by external triggers",
        version=settings.version,
        debug=settings.debug,
        # All endpoints are under the /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(JobQueueException, job_queue_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(cron_router, prefix="/v1")
    app.include_router(jobs_router, prefix="/v1")

    register_job_handlers(
        job_registry, SqlAlchemyJobStore(database.SessionLocal), settings
    )

    # Freeze the registry in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        job_registry.freeze()

    return app


# Create the app instance
app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "jobqueue.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )


if __name__ == "__main__":
    main()
