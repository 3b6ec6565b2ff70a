"""
Bedoui quote backend
FastAPI application accepting storefront quote requests, rendering the quote
as a PDF and emailing it to the sales team and the customer.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import Settings, get_settings
from app.routers import admin, health, quotes
from app.services.dedup_store import DuplicateSuppressionStore
from app.services.health import HealthReporter
from app.services.job_queue import QuoteJobQueue
from app.services.mailer import QuoteDispatcher, SmtpMailer
from app.services.quote_processor import QuoteProcessor
from app.services.quote_renderer import QuoteRenderer

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

# Deployed frontends and local dev servers (Vite dev + preview)
_DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:5174",
    "http://localhost:4173",
    "http://localhost:4174",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:4173",
    "https://bedoui-frontend.onrender.com",
    "https://bedoui-backend.onrender.com",
    "https://backend-bedoui.onrender.com",
    "https://bedouistoreproducts.vercel.app",
]

_HOSTED_ORIGIN_REGEX = r"https://[A-Za-z0-9.-]+\.(?:onrender\.com|vercel\.app)"
_LOCAL_ORIGIN_REGEX = (
    r"https?://(?:localhost|127\.0\.0\.1|10\.\d{1,3}\.\d{1,3}\.\d{1,3}"
    r"|192\.168\.\d{1,3}\.\d{1,3}|172\.(?:1[6-9]|2[0-9]|3[0-1])\.\d{1,3}\.\d{1,3})"
    r"(?::\d+)?"
)


def get_cors_origins(settings: Settings) -> List[str]:
    """
    Build the explicit list of allowed CORS origins.

    Always includes the local Vite dev/preview servers and the deployed
    frontends. FRONTEND_ORIGIN and the comma-separated CORS_ORIGINS are
    appended. Duplicates are removed while preserving order.
    """
    extra: List[str] = list(settings.cors_origins)
    if settings.frontend_origin:
        extra.insert(0, settings.frontend_origin)

    seen: set = set()
    origins: List[str] = []
    for origin in _DEFAULT_ORIGINS + extra:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


def get_cors_origin_regex(settings: Settings) -> str:
    """Any Render/Vercel deployment; localhost and private networks outside production."""
    if settings.is_production:
        return _HOSTED_ORIGIN_REGEX
    return f"(?:{_HOSTED_ORIGIN_REGEX})|(?:{_LOCAL_ORIGIN_REGEX})"


def _log_configuration(settings: Settings) -> None:
    def state(value) -> str:
        return "CONFIGURED" if value else "NOT CONFIGURED"

    logger.info(
        f"SMTP configuration: host={settings.smtp_host or 'NOT CONFIGURED'} "
        f"user={state(settings.smtp_user)} pass={state(settings.smtp_password)} "
        f"admins={len(settings.admin_recipients)}"
    )
    logger.info(
        f"API configuration: api_key={state(settings.api_key)} "
        f"frontend_origin={settings.frontend_origin or 'NOT CONFIGURED'}"
    )
    logger.info(f"Allowed CORS origins -> {get_cors_origins(settings)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    _log_configuration(app.state.settings)
    app.state.dedup_store.start_sweeper()
    try:
        yield
    finally:
        await app.state.dedup_store.stop_sweeper()
        await app.state.job_queue.stop()


async def _flat_http_exception_handler(request: Request, exc: HTTPException):
    """Return dict details as the response body ({success: false, ...})."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return await http_exception_handler(request, exc)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application and its services.

    The duplicate store, renderer, mailer, processor, job queue and health
    reporter are created once per application and stored on ``app.state``.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Bedoui API",
        description="Quote request intake, PDF rendering and email delivery",
        version="1.0.0",
        lifespan=lifespan,
    )

    store = DuplicateSuppressionStore(
        window_seconds=settings.duplicate_window,
        sweep_interval=settings.sweep_interval,
    )
    renderer = QuoteRenderer(settings)
    mailer = SmtpMailer(settings)
    dispatcher = QuoteDispatcher(settings, store, mailer)
    processor = QuoteProcessor(settings, renderer, dispatcher)
    queue = QuoteJobQueue(handler=processor.process, max_size=settings.queue_max_size)

    app.state.settings = settings
    app.state.dedup_store = store
    app.state.renderer = renderer
    app.state.mailer = mailer
    app.state.dispatcher = dispatcher
    app.state.processor = processor
    app.state.job_queue = queue
    app.state.health = HealthReporter(
        settings,
        queue_status=lambda: {"pending": queue.pending, "running": queue.is_running},
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_origin_regex=get_cors_origin_regex(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(HTTPException, _flat_http_exception_handler)

    app.include_router(health.router, tags=["health"])
    app.include_router(quotes.router, tags=["quotes"])
    app.include_router(admin.router, prefix="/admin", tags=["admin"])

    return app


app = create_app()
