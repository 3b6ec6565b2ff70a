"""
Service information and health endpoints.
"""

import os
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from app.config import Settings
from app.dependencies import get_app_settings, get_health_reporter
from app.services.health import HealthReporter, browser_candidates

router = APIRouter()

SERVICE_NAME = "Bedoui API"
SERVICE_VERSION = "1.0.0"


@router.get("/")
async def root():
    return {
        "name": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "endpoints": ["/health", "/send-quote", "/download-devis/{name}"],
    }


@router.get("/health")
async def health(reporter: HealthReporter = Depends(get_health_reporter)):
    """Cached (1 minute) status of the browser, PDF directory and SMTP configuration."""
    return await reporter.report()


@router.get("/debug/browser")
async def debug_browser(settings: Settings = Depends(get_app_settings)):
    """List candidate Chromium executables. Disabled in production."""
    if settings.is_production:
        raise HTTPException(status_code=404, detail="Not found")

    candidates = browser_candidates(settings)
    return {
        "environment": {
            "PLAYWRIGHT_CHROMIUM_EXECUTABLE_PATH": os.getenv("PLAYWRIGHT_CHROMIUM_EXECUTABLE_PATH"),
            "CHROME_BIN": os.getenv("CHROME_BIN"),
        },
        "configured": settings.chromium_executable_path,
        "candidates": candidates,
        "checks": {c: os.path.exists(c) for c in candidates},
    }
