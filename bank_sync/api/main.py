"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from bank_sync.api.middleware import RequestIDMiddleware, MetricsMiddleware
from bank_sync.api.v1 import connections, consents
from bank_sync.infrastructure.observability.logging import setup_logging
from bank_sync.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Bank Sync Service",
        description="Account-aggregator consent tracking and transaction import",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(connections.router, prefix="/v1", tags=["connections"])
    app.include_router(consents.router, prefix="/v1", tags=["consents"])

    return app


app = create_app()
