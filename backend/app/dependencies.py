"""
Request-scoped accessors for the services built by create_app().

Services live on ``app.state`` so each application instance (and each test)
owns its own store, queue and settings.
"""

from fastapi import Request

from app.config import Settings
from app.services.dedup_store import DuplicateSuppressionStore
from app.services.health import HealthReporter
from app.services.job_queue import QuoteJobQueue


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dedup_store(request: Request) -> DuplicateSuppressionStore:
    return request.app.state.dedup_store


def get_job_queue(request: Request) -> QuoteJobQueue:
    return request.app.state.job_queue


def get_health_reporter(request: Request) -> HealthReporter:
    return request.app.state.health
