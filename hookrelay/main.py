"""
HookRelay - Outbound webhook delivery service

FastAPI application entry point.
"""
from fastapi import FastAPI

# Import observability modules
from hookrelay.config import settings
from hookrelay.logging_config import configure_logging
from hookrelay.sentry_config import configure_sentry
from hookrelay.middleware.logging import LoggingMiddleware
from hookrelay.routes.metrics import router as metrics_router

# Import route modules
from hookrelay.routes.webhooks import router as webhooks_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Signed, retried webhook delivery of producer sale events",
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include webhook delivery routes
app.include_router(webhooks_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected"
    }
