"""FastAPI server for batch reconciliation.

Exposes the push webhook, the scheduled reconciliation trigger and
read-only job listings.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import Settings, load_settings
from ..domain.exceptions import ConfigurationError, RecordNotFoundError
from ..services import Services, build_services
from .routes import cron, jobs, webhooks

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Raises ConfigurationError when the server secrets are not configured.
    """
    if services is None:
        services = build_services(settings or load_settings())
    services.settings.require_server()

    app = FastAPI(
        title="Invoice Batches API",
        description="Reconciliation and ingestion of asynchronous invoice extraction jobs",
        version="0.1.0",
    )
    app.state.services = services

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error(f"Configuration error: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Server configuration error"})

    @app.exception_handler(RecordNotFoundError)
    async def not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
    app.include_router(cron.router, prefix="/cron", tags=["Cron"])
    app.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])

    return app
