# payrecon/main.py

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payrecon.config import get_settings
from payrecon.routers import health, reconcile, payments, aliases, duplicates, webhooks

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# ============================================
# Create FastAPI app
# ============================================

app = FastAPI(
    title=settings.app_name,
    description="Payment reconciliation and duplicate detection",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# ============================================
# CORS middleware
# ============================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# Include routers
# ============================================

app.include_router(health.router, tags=["Health"])
app.include_router(reconcile.router, tags=["Reconciliation"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(aliases.router, prefix="/aliases", tags=["Aliases"])
app.include_router(duplicates.router, prefix="/duplicate-cases", tags=["Duplicates"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

# ============================================
# Root endpoint
# ============================================

@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs" if settings.debug else None,
    }
