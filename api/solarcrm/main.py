"""SolarCRM Webhooks - Main application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from solarcrm.config import get_settings
from solarcrm.db.session import async_session_factory
from solarcrm.metrics import router as metrics_router
from solarcrm.valkey import close_valkey
from solarcrm.webhooks.config import WebhookConfigLoader
from solarcrm.webhooks.router import router as webhooks_router
from solarcrm.webhooks.service import WebhookService

settings = get_settings()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    service = WebhookService(
        async_session_factory,
        settings=WebhookConfigLoader.load(),
        use_sweep_lock=settings.WEBHOOK_SWEEP_LOCK_ENABLED,
    )
    app.state.webhook_service = service
    await service.start(sweeper=settings.WEBHOOK_SWEEPER_ENABLED and not settings.TESTING)
    logger.info("Webhook service ready")

    yield

    # Cleanup on shutdown
    await service.shutdown()
    await close_valkey()


app = FastAPI(
    title="SolarCRM Webhooks",
    description="""
## Outbound Webhook API

Notifies tenant-registered endpoints about CRM events (leads, contracts,
invoices, payments, ...).

### Delivery

- Every request is a `POST` with a JSON envelope
  `{event, tenant_id, timestamp, data, metadata}`
- `X-Webhook-Signature` carries the hex HMAC-SHA256 of the raw body, keyed
  with the endpoint secret; receivers recompute it and reject mismatches
- Failed deliveries are retried after 30s, 1m, 5m, 15m and 1h, then marked
  `failed`

### Administration

Manage endpoints and inspect delivery history under `/api/v1/webhooks`.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Routes - all under /api/v1
API_PREFIX = "/api/v1"
app.include_router(webhooks_router, prefix=API_PREFIX)

# Metrics at root level (for Prometheus scraping)
app.include_router(metrics_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "SolarCRM Webhooks",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
