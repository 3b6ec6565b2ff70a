"""
Background processing of a single quote job.

Pipeline: render HTML -> print PDF -> save file -> mint download link ->
email admins and customer. Each stage reports a typed result; a failed render
or save only means the email goes out without an attachment and link.
"""

import logging
from typing import Optional

from app.config import Settings
from app.models.quote import JobOutcome, QuoteJob, StageResult, StageStatus
from app.services.download_token import issue_download_token
from app.services.mailer import QuoteDispatcher
from app.services.quote_renderer import QuoteRenderer, compute_total

logger = logging.getLogger(__name__)


class QuoteProcessor:
    def __init__(
        self,
        settings: Settings,
        renderer: QuoteRenderer,
        dispatcher: QuoteDispatcher,
    ) -> None:
        self.settings = settings
        self.renderer = renderer
        self.dispatcher = dispatcher

    def download_url(self, base_url: str, file_name: str, token: str) -> str:
        base = (self.settings.public_base_url or base_url or "").rstrip("/")
        return f"{base}/download-devis/{file_name}?token={token}"

    async def process(self, job: QuoteJob) -> JobOutcome:
        short_sig = job.fingerprint[:12]
        logger.info(f"Processing quote request {short_sig} in background")

        body = job.body
        total = compute_total(body.get("products"))
        html = self.renderer.render_html(body)

        pdf: Optional[bytes] = None
        file_name: Optional[str] = None
        token: Optional[str] = None
        url: Optional[str] = None

        result = await self.renderer.render_pdf(html)
        if result.ok:
            try:
                file_name = self.renderer.save_pdf(result.pdf)
                pdf = result.pdf
                render_stage = StageResult("render", StageStatus.OK)
            except OSError as exc:
                logger.error(f"Could not write quote PDF for {short_sig}: {exc}")
                render_stage = StageResult("render", StageStatus.FAILED, f"write failed: {exc}")
        else:
            render_stage = StageResult("render", StageStatus.FAILED, result.reason)

        if file_name:
            token = issue_download_token(
                file_name,
                self.settings.download_token_secret,
                self.settings.download_token_ttl,
            )
            url = self.download_url(job.base_url, file_name, token)

        delivery = await self.dispatcher.dispatch(
            job.fingerprint,
            body,
            html,
            total,
            pdf=pdf,
            file_name=file_name,
            download_url=url,
        )

        outcome = JobOutcome(
            fingerprint=job.fingerprint,
            render=render_stage,
            delivery=delivery,
            file_name=file_name,
            download_token=token,
            download_url=url,
            total=total,
        )
        logger.info(
            f"Quote {short_sig} processed: render={render_stage.status.value} "
            f"file={file_name} delivery={delivery.status.value} sent={delivery.sent} "
            f"failed={sorted(delivery.failed)} skipped={delivery.skipped}"
        )
        return outcome
