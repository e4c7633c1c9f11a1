"""
Main FastAPI application for the wardrobe billing engine.
Serves subscription reconciliation, MercadoPago webhooks, usage, health and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wardrobe_billing.core.config import settings
from wardrobe_billing.core.logging import configure_logging
from wardrobe_billing.api.routes import health, subscriptions, usage, webhooks
from wardrobe_billing.utils.metrics import router as metrics_router


configure_logging()

app = FastAPI(
    title="Wardrobe Billing API",
    description="Subscription lifecycle and usage-credit reconciliation",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(subscriptions.router)
app.include_router(webhooks.router)
app.include_router(usage.router)
app.include_router(metrics_router)
