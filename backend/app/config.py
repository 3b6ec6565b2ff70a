"""
Application settings.

All configuration comes from environment variables (optionally loaded from a
.env file by python-dotenv). Values are trimmed so that stray whitespace or
trailing newlines pasted into a hosting dashboard do not break comparisons.

Variable names follow the ones already used by the storefront deployment
(API_KEY, SMTP_PASS, RECEIVER_EMAIL, ...) so existing environments keep working.
"""

import os
from functools import lru_cache
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _first(env: Mapping[str, str], *names: str) -> str:
    """Return the first non-empty value among the given variable names."""
    for name in names:
        value = _clean(env.get(name))
        if value:
            return value
    return ""


def _as_int(raw: str, default: int) -> int:
    try:
        return int(float(raw)) if raw else default
    except ValueError:
        return default


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    """Process-wide configuration for the quote backend."""

    api_key: str = ""

    download_token_secret: str = "dev-download-secret"
    download_token_ttl: int = 3600

    duplicate_window: int = 15
    sweep_interval: int = 60

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_timeout: int = 30
    admin_recipients: List[str] = []

    pdf_template_path: Optional[str] = None
    pdf_storage_dir: str = "generated-pdfs"
    pdf_render_timeout: int = 30
    chromium_executable_path: Optional[str] = None

    queue_max_size: int = 100

    public_base_url: Optional[str] = None
    frontend_origin: Optional[str] = None
    cors_origins: List[str] = []

    company_name: str = "Bedouielec Transformateurs"
    currency: str = "TND"
    environment: str = "development"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def pdf_dir(self) -> str:
        """Absolute path of the PDF storage directory."""
        return os.path.abspath(self.pdf_storage_dir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: mapping to read from (defaults to os.environ). Tests pass
                a plain dict so they never depend on the developer's shell.
        """
        env = os.environ if environ is None else environ

        return cls(
            api_key=_first(env, "API_KEY", "VITE_API_KEY"),
            download_token_secret=(
                _first(env, "DOWNLOAD_TOKEN_SECRET", "ENCRYPTION_KEY")
                or "dev-download-secret"
            ),
            download_token_ttl=_as_int(
                _first(env, "DOWNLOAD_TOKEN_TTL_SECONDS", "DOWNLOAD_TOKEN_TTL"), 3600
            ),
            duplicate_window=_as_int(_first(env, "DUPLICATE_WINDOW_SECONDS"), 15),
            sweep_interval=_as_int(_first(env, "DUPLICATE_SWEEP_INTERVAL_SECONDS"), 60),
            smtp_host=_first(env, "SMTP_HOST"),
            smtp_port=_as_int(_first(env, "SMTP_PORT"), 587),
            smtp_user=_first(env, "SMTP_USER"),
            smtp_password=_first(env, "SMTP_PASS", "SMTP_PASSWORD"),
            smtp_timeout=_as_int(_first(env, "SMTP_TIMEOUT_SECONDS"), 30),
            admin_recipients=_split_list(_first(env, "RECEIVER_EMAIL")),
            pdf_template_path=_first(env, "PDF_TEMPLATE_PATH") or None,
            pdf_storage_dir=_first(env, "PDF_STORAGE_PATH") or "generated-pdfs",
            pdf_render_timeout=_as_int(_first(env, "PDF_RENDER_TIMEOUT_SECONDS"), 30),
            chromium_executable_path=(
                _first(env, "PLAYWRIGHT_CHROMIUM_EXECUTABLE_PATH", "CHROME_BIN") or None
            ),
            queue_max_size=_as_int(_first(env, "QUOTE_QUEUE_MAX_SIZE"), 100),
            public_base_url=_first(env, "PUBLIC_BASE_URL") or None,
            frontend_origin=_first(env, "FRONTEND_ORIGIN") or None,
            cors_origins=_split_list(_first(env, "CORS_ORIGINS")),
            company_name=_first(env, "COMPANY_NAME") or "Bedouielec Transformateurs",
            currency=_first(env, "QUOTE_CURRENCY") or "TND",
            environment=_first(env, "APP_ENV", "NODE_ENV") or "development",
        )


@lru_cache
def get_settings() -> Settings:
    """Load .env once and return the cached process-wide settings."""
    load_dotenv()
    return Settings.from_env()
