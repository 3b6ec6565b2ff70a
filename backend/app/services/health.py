"""
Health report for the quote backend.

The report probes the Chromium binary (a subprocess call), so results are
cached for one minute. Building the report never raises: on an internal error
a reduced fallback payload is returned (and cached) instead.
"""

import asyncio
import logging
import os
import platform
import resource
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.config import Settings

logger = logging.getLogger(__name__)

HEALTH_CACHE_TTL_SECONDS = 60

_BROWSER_VERSION_COMMANDS = [
    "chromium",
    "/usr/bin/chromium",
    "chromium-browser",
    "google-chrome",
]


def browser_candidates(settings: Settings) -> list[str]:
    """Chromium executables worth checking on this host."""
    candidates = [
        settings.chromium_executable_path,
        os.getenv("PLAYWRIGHT_CHROMIUM_EXECUTABLE_PATH"),
        os.getenv("CHROME_BIN"),
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
    ]
    return list(dict.fromkeys(c for c in candidates if c))


async def detect_browser_version(settings: Settings) -> Optional[str]:
    """Return the output of ``<chromium> --version`` for the first binary that answers."""
    commands = []
    if settings.chromium_executable_path:
        commands.append(settings.chromium_executable_path)
    commands.extend(_BROWSER_VERSION_COMMANDS)

    for command in commands:
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=5)
        except (OSError, asyncio.TimeoutError):
            continue
        if proc.returncode == 0 and stdout.strip():
            return stdout.decode(errors="ignore").strip()
    return None


def _max_rss_mb() -> int:
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes on Linux
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(usage / divisor)


class HealthReporter:
    """Builds and caches the /health payload."""

    def __init__(
        self,
        settings: Settings,
        queue_status: Optional[Callable[[], dict[str, Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._queue_status = queue_status
        self._clock = clock
        self._started_at = clock()
        self._cached: Optional[dict[str, Any]] = None
        self._cached_at = 0.0

    def _pdf_directory_status(self) -> str:
        return "ok" if os.access(self.settings.pdf_dir, os.W_OK) else "error"

    def _smtp_status(self) -> dict[str, Any]:
        s = self.settings
        return {
            "configured": s.smtp_configured,
            "host": s.smtp_host or "not configured",
            "user": "configured" if s.smtp_user else "not configured",
        }

    async def _build(self) -> dict[str, Any]:
        report: dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "chrome": await detect_browser_version(self.settings),
            "python": platform.python_version(),
            "environment": self.settings.environment,
            "memory": {"max_rss_mb": _max_rss_mb()},
            "uptime": round(self._clock() - self._started_at),
            "pdfDirectory": self._pdf_directory_status(),
            "smtp": self._smtp_status(),
        }
        if self._queue_status is not None:
            report["queue"] = self._queue_status()
        return report

    def _fallback(self, exc: Exception) -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "chrome": None,
            "python": platform.python_version(),
            "environment": self.settings.environment,
            "note": "health check partially failed",
            "error": "internal error" if self.settings.is_production else str(exc),
        }

    async def report(self) -> dict[str, Any]:
        now = self._clock()
        if self._cached is not None and now - self._cached_at < HEALTH_CACHE_TTL_SECONDS:
            return self._cached

        try:
            payload = await self._build()
        except Exception as exc:
            logger.error(f"Health check failed: {exc}")
            payload = self._fallback(exc)

        self._cached = payload
        self._cached_at = now
        return payload
