"""
NumisGallery Billing Webhooks - FastAPI Application

Main entry point for the billing service.
Receives Stripe webhooks and issues checkout / billing portal sessions.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from numis_billing.api.rate_limit import (
    RateLimitExceeded,
    _rate_limit_exceeded_handler,
    limiter,
)
from numis_billing.config.settings import settings
from numis_billing.infrastructure.exceptions import (
    ConfigurationError,
    NumisBillingError,
    ValidationError,
    WebhookVerificationError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(
        f"Billing webhooks service starting in {settings.environment} mode "
        f"on port {settings.port}"
    )
    if settings.webhook_verification_enabled:
        logger.info("Webhook signature verification enabled")
    else:
        logger.error("STRIPE_WEBHOOK_SECRET missing, every webhook will be rejected")

    yield

    logger.info("Billing webhooks service shutting down...")


app = FastAPI(
    title="NumisGallery Billing Webhooks",
    description="Stripe subscription reconciliation for NumisGallery",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(WebhookVerificationError)
async def webhook_verification_error_handler(request: Request, exc: WebhookVerificationError):
    """Reject unverifiable webhooks."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    """Operational fault: a required secret was never provisioned."""
    logger.error(f"Configuration error: {exc.message} {exc.details}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


@app.exception_handler(NumisBillingError)
async def general_error_handler(request: Request, exc: NumisBillingError):
    """Handle all other application errors."""
    logger.error(f"Unhandled application error: {exc.message} {exc.details}")
    return JSONResponse(
        status_code=500,
        content={"error": exc.__class__.__name__, "message": "Internal error"},
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "webhooks"}


# ============================================================================
# Import and register routers
# ============================================================================

from numis_billing.api.routes import sessions, webhooks  # noqa: E402

app.include_router(webhooks.router, tags=["Webhooks"])
app.include_router(sessions.router, tags=["Sessions"])
