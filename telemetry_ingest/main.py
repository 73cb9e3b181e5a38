"""
Factory Telemetry Ingest - machine event ingestion and defect statistics service.

Features:
- Idempotent batch ingestion with last-writer-wins conflict resolution
- Machine and production line defect statistics
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from . import SERVICE_NAME, __version__
from .adapters.base import RecordStore
from .adapters.factory import create_store
from .api.router import router
from .config import Settings, get_settings
from .health import HealthChecker
from .ingest.validator import ValidationPolicy
from .logging import setup_logging, get_logger
from .metrics import Metrics
from .middleware import (
    CorrelationIdMiddleware,
    ErrorHandlerMiddleware,
    MetricsMiddleware,
    ValidationMiddleware,
)
from .services.ingestion import IngestionService
from .services.stats import StatsService

settings = get_settings()

setup_logging(json_output=settings.LOG_JSON, service_name=SERVICE_NAME)
logger = get_logger()


def create_app(store: RecordStore | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Build the application around a record store.

    Args:
        store: Record store to use (defaults to the configured adapter)
        settings: Settings to use (defaults to the cached environment settings)
    """
    if settings is None:
        settings = get_settings()
    if store is None:
        store = create_store(settings)
    metrics = Metrics(service_name=SERVICE_NAME, version=__version__)
    health_checker = HealthChecker(store, service_name=SERVICE_NAME, version=__version__)

    app = FastAPI(
        title="Factory Telemetry Ingest",
        version=__version__,
        description="Machine event ingestion with deduplication and defect statistics",
    )

    app.state.store = store
    app.state.metrics = metrics
    app.state.ingestion_service = IngestionService(
        store,
        policy=ValidationPolicy.from_settings(settings),
        metrics=metrics,
        max_update_attempts=settings.UPDATE_MAX_ATTEMPTS,
    )
    app.state.stats_service = StatsService(store, healthy_defect_rate=settings.HEALTHY_DEFECT_RATE)

    # Last added runs first: correlation ID wraps everything else
    app.add_middleware(ValidationMiddleware, max_bytes=settings.MAX_REQUEST_BYTES)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(router)

    # Mount Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app(registry=metrics.registry))

    @app.get("/health")
    async def health():
        """
        Liveness probe - basic health check.

        Returns 200 if service is running.
        """
        logger.debug("health_check_liveness")
        return health_checker.liveness()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe - comprehensive health check.

        Returns:
            200: Service is ready to handle traffic
            503: Service is not ready
        """
        logger.debug("health_check_readiness")
        metrics.update_system_metrics()
        result = await health_checker.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(result, status_code=status_code)

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "service_starting",
            version=__version__,
            env=settings.ENV,
            store=type(store).__name__,
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("service_stopping")
        metrics.app_up.labels(service=SERVICE_NAME, version=__version__).set(0)
        close = getattr(store, "close", None)
        if close is not None:
            close()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "telemetry_ingest.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=settings.ENV == "dev",
    )
