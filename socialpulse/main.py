"""
SocialPulse - Billing Core API
Plans, usage metering, checkout and payment webhooks
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import os
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv
import httpx

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Import API routers
from socialpulse.api import checkout, subscriptions, usage, lemonsqueezy_webhook, plans, ai
from socialpulse.api.admin import webhooks
from socialpulse.config.settings import Settings
from socialpulse.services.ai_content import ContentGenerator
from socialpulse.services.billing import BillingService
from socialpulse.services.entitlements import EntitlementGate
from socialpulse.services.lemonsqueezy_webhook import LemonSqueezyWebhookHandler
from socialpulse.services.usage_tracker import UsageTracker
from socialpulse.utils.database import engine, create_tables
from socialpulse.utils.exceptions import register_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    await create_tables()

    settings = Settings()
    settings.log_warnings()
    http_client = httpx.AsyncClient(timeout=settings.payments_timeout)
    usage_tracker = UsageTracker(settings)

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.billing_service = BillingService(settings, http_client)
    app.state.webhook_handler = LemonSqueezyWebhookHandler(settings)
    app.state.usage_tracker = usage_tracker
    app.state.entitlement_gate = EntitlementGate(usage_tracker)
    app.state.content_generator = ContentGenerator(settings)
    logger.info("SocialPulse billing core started")

    yield

    # Shutdown
    await app.state.content_generator.close()
    await http_client.aclose()
    await engine.dispose()


# Initialize FastAPI app
app = FastAPI(
    title="SocialPulse",
    description="Billing core: plans, usage metering, checkout and payment webhooks",
    version="1.0.0",
    docs_url="/api/docs" if os.getenv("DEBUG", "false").lower() == "true" else None,
    lifespan=lifespan
)

# Middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# API Routes
app.include_router(checkout.router, prefix="/api/v1")
app.include_router(subscriptions.router, prefix="/api/v1")
app.include_router(usage.router, prefix="/api/v1")
app.include_router(lemonsqueezy_webhook.router, prefix="/api/v1")
app.include_router(plans.router, prefix="/api/v1")
app.include_router(ai.router, prefix="/api/v1")

# Admin Routes
app.include_router(webhooks.router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "socialpulse-billing"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "socialpulse.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8011")),
        reload=os.getenv("DEBUG", "false").lower() == "true"
    )
