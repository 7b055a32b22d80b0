"""
Membership Billing — FastAPI Backend
Reconciles card, on-chain and manually reviewed payments into subscriptions.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import create_tables, engine
from error_handlers import register_error_handlers
from routers import manual_payments, memberships

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Membership billing API starting (%s)", settings.ENVIRONMENT)
    if settings.AUTO_CREATE_TABLES:
        await create_tables()
    yield
    await engine.dispose()
    logger.info("Membership billing API shut down.")


app = FastAPI(
    title="Membership Billing API",
    description="Subscription payments reconciliation backend",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# ── Routers ────────────────────────────────────────────────
app.include_router(memberships.router, prefix="/api/memberships", tags=["Memberships"])
app.include_router(manual_payments.router, prefix="/api/manual-payments", tags=["Manual Payments"])
app.include_router(manual_payments.admin_router, prefix="/api/admin/manual-payments", tags=["Manual Payments Review"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "Membership Billing API"}
