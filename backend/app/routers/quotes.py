"""
Quote intake and PDF download endpoints.

Endpoints:
  POST /send-quote              — accept a quote request (auth: x-api-key)
  GET  /download-devis/{name}   — download a generated quote (auth: signed token)

POST /send-quote answers 202 as soon as the request is validated and queued;
rendering and email delivery happen in the background job queue, so the
response never reflects delivery success. Repeated submissions of the same
body inside the duplicate window are acknowledged without queueing new work.
"""

import json
import logging
import os
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError

from app.auth import require_api_key
from app.config import Settings
from app.dependencies import get_app_settings, get_dedup_store, get_job_queue
from app.models.quote import QuoteAccepted, QuoteJob, QuoteRequest
from app.services.dedup_store import (
    DuplicateSuppressionStore,
    ReservationStatus,
    compute_fingerprint,
)
from app.services.download_token import verify_download_token
from app.services.job_queue import QueueFullError, QuoteJobQueue

logger = logging.getLogger(__name__)

router = APIRouter()

# Headers worth keeping with a job for troubleshooting; the API key is not one of them.
_JOB_HEADERS = ("user-agent", "origin", "referer", "x-forwarded-for")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def _accepted(**fields) -> JSONResponse:
    body = QuoteAccepted(**fields).model_dump(exclude_none=True)
    return JSONResponse(status_code=202, content=body)


def _describe_validation_error(exc: ValidationError) -> str:
    fields = sorted({".".join(str(p) for p in err["loc"]) or "body" for err in exc.errors()})
    return f"Missing or invalid fields: {', '.join(fields)}"


async def _read_json_body(request: Request):
    raw = await request.body()
    if not raw:
        return None
    return json.loads(raw)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/send-quote", dependencies=[Depends(require_api_key)])
async def send_quote(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: DuplicateSuppressionStore = Depends(get_dedup_store),
    queue: QuoteJobQueue = Depends(get_job_queue),
):
    """
    Validate, fingerprint and enqueue a quote request.

    Responses:
      202 {success, queued}     — new request, processing in background
      202 {success, duplicate}  — identical request already queued or sent
      400                       — missing/invalid fields or malformed JSON
      503                       — background queue is full
      500                       — unexpected error
    """
    try:
        try:
            body = await _read_json_body(request)
        except ValueError:
            return _error(400, "Malformed JSON body")

        if not isinstance(body, dict):
            return _error(400, "Required fields missing or empty product list.")

        try:
            QuoteRequest.model_validate(body)
        except ValidationError as exc:
            return _error(
                400,
                "Required fields missing or empty product list.",
                _describe_validation_error(exc),
            )

        fingerprint = compute_fingerprint(body, settings.download_token_secret)
        status = store.check_and_reserve(fingerprint)

        if status == ReservationStatus.IN_PROGRESS:
            logger.info(f"Duplicate quote request ignored (in progress): {fingerprint}")
            return _accepted(duplicate=True, message="Duplicate request ignored.")

        if status == ReservationStatus.ALREADY_SENT:
            logger.info(f"Duplicate quote request ignored (already sent): {fingerprint}")
            return _accepted(duplicate=True, message="Request already processed.")

        try:
            job = QuoteJob(
                body=body,
                headers={h: request.headers[h] for h in _JOB_HEADERS if h in request.headers},
                fingerprint=fingerprint,
                received_at=time.time(),
                base_url=str(request.base_url).rstrip("/"),
            )
            length = queue.enqueue(job)
        except QueueFullError as exc:
            store.release(fingerprint)
            logger.error(f"Quote request rejected: {exc}")
            return _error(503, "Quote queue is full", "Please try again in a few minutes.")
        except Exception:
            # Nothing was queued; a retry must not be treated as a duplicate
            store.release(fingerprint)
            raise

        logger.info(f"Quote request accepted and queued (length={length}): {fingerprint}")
        return _accepted(
            queued=True,
            message=(
                "The request has been accepted and will be processed in the "
                "background. You will receive an email."
            ),
        )

    except Exception as exc:
        logger.exception("Unexpected error while queueing /send-quote")
        return _error(500, str(exc) or "Server error")


@router.get("/download-devis/{name}")
async def download_devis(
    name: str,
    token: Optional[str] = Query(None),
    settings: Settings = Depends(get_app_settings),
):
    """
    Serve a generated quote PDF to the holder of a valid download token.

    The token must be valid, unexpired and minted for exactly this file name.
    """
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized: missing token")

    try:
        payload = verify_download_token(token, settings.download_token_secret)
        if not payload or payload.get("name") != name:
            raise HTTPException(status_code=403, detail="Forbidden: invalid or expired token")

        file_path = os.path.join(settings.pdf_dir, os.path.basename(name))
        if not os.path.isfile(file_path):
            logger.error(f"Requested quote PDF not found: {file_path}")
            raise HTTPException(status_code=404, detail="Not found")

        return FileResponse(file_path, media_type="application/pdf", filename=name)

    except HTTPException:
        raise
    except Exception as exc:
        logger.error(f"Error serving quote PDF {name!r}: {exc}")
        raise HTTPException(status_code=500, detail="Internal error")
