"""
Main FastAPI application entry point.

Responsibilities:
- Initialize FastAPI app
- Include the HubSpot router (install, OAuth callback, webhook)
- Setup startup/shutdown events
- Health checks
"""
from __future__ import annotations

import logging
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routes import hubspot
from models.database import close_db, get_pool_status
from config import log_missing_env_vars

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
)

app = FastAPI(title="HubSpot Client Sync API", version="1.0.0")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all uncaught exceptions without leaking details to the caller."""
    logging.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Routes
app.include_router(hubspot.router, prefix="/hubspot", tags=["hubspot"])


@app.on_event("startup")
async def startup() -> None:
    """Log configuration gaps on startup."""
    # Note: tables are created by Alembic migrations, not init_db()
    log_missing_env_vars(logging.getLogger("config"))
    logging.info("HubSpot client sync API ready")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Clean up database connections on shutdown."""
    logging.info("Shutting down, closing database connections...")
    await close_db()
    logging.info("Database connections closed")


@app.get("/")
async def root_health_check() -> dict[str, str]:
    """Root endpoint exposing the health check payload."""
    return await health_check()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    logging.info("Health check requested")
    return {"status": "ok"}


@app.get("/health/db")
async def db_health_check() -> dict[str, object]:
    """Database health check with pool status."""
    try:
        pool_status = get_pool_status()
        return {
            "status": "ok",
            "pool": pool_status,
        }
    except Exception as e:
        logging.error("Database health check failed: %s", e)
        return {
            "status": "error",
            "error": "pool status unavailable",
        }
