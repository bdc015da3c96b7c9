import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from expenseflow.core.config import settings
from expenseflow.core.logging_config import setup_logging
from expenseflow.db.init_db import create_tables
from expenseflow.middleware.logging import LoggingMiddleware
from expenseflow.api.v1.api import api_router

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.DATABASE_CREATE_TABLES:
        await create_tables()
    logger.info(f"🚀 Expense approval service started ({settings.ENVIRONMENT})")
    yield
    logger.info("👋 Expense approval service stopped")

# Create FastAPI app
app_config = {
    "title": "Expense Approval Service",
    "description": "Multi-tenant expense submission with configurable approval routing",
    "version": "1.0.0",
    "lifespan": lifespan,
}

app = FastAPI(**app_config)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=settings.ALLOWED_METHODS,
    allow_headers=settings.ALLOWED_HEADERS
)
app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(api_router, prefix="/api/v1")

@app.get("/")
async def root():
    return {
        "message": "Expense Approval Service",
        "status": "active",
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.ENVIRONMENT
    }
