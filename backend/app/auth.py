"""
API key authentication.

The storefront backend is called by our own frontend only; requests carry the
shared key in the ``x-api-key`` header. Values are trimmed on both sides so a
trailing newline in a hosting dashboard does not lock everybody out.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from app.config import Settings
from app.dependencies import get_app_settings

logger = logging.getLogger(__name__)


def _mask(key: str) -> str:
    return f"{key[:6]}..." if key else "(empty)"


def check_api_key(provided: Optional[str], expected: str) -> None:
    """
    Compare the provided key with the configured one.

    Raises:
        HTTPException: 500 if no key is configured on the server,
                       401 if the key is missing or does not match.
    """
    if not expected:
        logger.error("API_KEY is not configured; rejecting request")
        raise HTTPException(
            status_code=500,
            detail={
                "success": False,
                "error": "Server configuration missing",
                "message": "The API key is not configured on the server",
            },
        )

    client_key = (provided or "").strip()
    if not hmac.compare_digest(client_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(f"Invalid API key received (masked): {_mask(client_key)}")
        raise HTTPException(
            status_code=401,
            detail={
                "success": False,
                "error": "Unauthorized: invalid or missing API key",
                "message": "Please check your API key configuration.",
            },
        )


async def require_api_key(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """FastAPI dependency guarding routes with the shared API key."""
    check_api_key(x_api_key, settings.api_key)
