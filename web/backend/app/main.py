"""FastAPI application for the CivicGuard issue service.

Provides REST API endpoints wrapping the civicguard package for:
- Proximity listing of nearby issues
- Radius-gated issue detail and status history
- Status transitions by authorities
- Community flagging and admin review
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

# Ensure the civicguard package is importable by adding the project root to sys.path.
_project_root = str(Path(__file__).resolve().parents[3])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from civicguard import __version__
from civicguard.errors import CivicGuardError
from web.backend.app.routers import admin, issues

app = FastAPI(
    title="CivicGuard API",
    description=(
        "REST API for neighborhood issue reporting. "
        "Provides endpoints for proximity search, radius-gated access, "
        "status lifecycle, and community moderation."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(issues.router)
app.include_router(admin.router)


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------


@app.exception_handler(CivicGuardError)
async def civicguard_error_handler(request: Request, exc: CivicGuardError):
    body = exc.to_dict()
    body["timestamp"] = datetime.now(timezone.utc).isoformat()
    return JSONResponse(status_code=exc.http_status, content={"error": body})


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "CivicGuard API",
        "version": __version__,
        "description": "Neighborhood issue reporting REST API",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
