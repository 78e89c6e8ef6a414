"""
Main FastAPI application for the settlement service.
Serves the Paystack webhook, health probes and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.middleware.request_id import RequestIdMiddleware
from app.api.routes import health, webhooks
from app.utils.metrics import router as metrics_router


configure_logging()

app = FastAPI(
    title="Settlement API",
    description="Paystack webhook ingestion and payment settlement",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=bool(origins),
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(webhooks.router)
app.include_router(metrics_router)
