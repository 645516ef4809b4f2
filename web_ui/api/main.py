"""
Weight Tracker Subscription API - Main FastAPI Application

Exposes the subscription engine:
- Plans, checkout and subscription management (Stripe / RevenueCat)
- Tier entitlements
- Weekly recording quota for the free tier
- WhatsApp reminder trial and access
"""

import sys
from pathlib import Path
from contextlib import asynccontextmanager

# Add parent directory to path to import existing modules
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.payment_providers.registry import get_provider_status
from config import settings
from subscription.errors import SubscriptionError
from subscription.feature_gate import FeatureGateError
from subscription.markets import get_active_markets
from utils.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events"""
    for status in get_provider_status():
        if status.get("available"):
            logger.info(f"Payment provider ready: {status['type']}")
        else:
            logger.warning(f"Payment provider unavailable: {status['type']} ({status.get('error')})")
    logger.info(f"Subscription API listening on port {settings.API_PORT} ({settings.PAYMENT_ENVIRONMENT})")
    yield
    logger.info("Subscription API shutting down")


app = FastAPI(
    title="Weight Tracker Subscription API",
    description="Markets, payment providers, entitlements and usage quotas",
    version="1.0.0",
    lifespan=lifespan,
    redirect_slashes=False,  # Don't redirect /path to /path/ - causes CORS issues
)

cors_origins = [
    "https://scanmyscale.com",
    "https://www.scanmyscale.com",
    "https://fotopeso.com.br",
    "https://www.fotopeso.com.br",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    settings.APP_BASE_URL,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Accept-Language",
        "Authorization",
        "Content-Type",
        "Origin",
        "X-Requested-With",
    ],
)


# ========== Error handlers ==========

@app.exception_handler(SubscriptionError)
async def subscription_error_handler(request: Request, exc: SubscriptionError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(FeatureGateError)
async def feature_gate_error_handler(request: Request, exc: FeatureGateError):
    return JSONResponse(
        status_code=403,
        content={
            "error": "FEATURE_NOT_AVAILABLE",
            "message": exc.message,
            "feature": exc.feature,
            "requiredTier": exc.required_tier,
        },
    )


# Import and include routers
from web_ui.api.routes import subscription, entitlements, recording, whatsapp

app.include_router(subscription.router, prefix="/api")
app.include_router(entitlements.router, prefix="/api")
app.include_router(recording.router, prefix="/api")
app.include_router(whatsapp.router, prefix="/api")


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "name": "Weight Tracker Subscription API",
        "version": "1.0.0",
        "markets": [market.id for market in get_active_markets()],
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "providers": get_provider_status()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.API_PORT)
