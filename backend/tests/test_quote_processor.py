"""
Background quote processing tests.

Renderer and dispatcher are mocked; these tests check how the stages are
chained and what ends up in the JobOutcome.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import Settings
from app.models.quote import DeliveryReport, QuoteJob, RenderResult, StageStatus
from app.services.download_token import verify_download_token
from app.services.quote_processor import QuoteProcessor

SECRET = "test-download-secret"


def _job(**overrides) -> QuoteJob:
    values = {
        "body": {
            "name": "A",
            "email": "a@x.com",
            "phone": "1",
            "products": [{"product": {"name": "P", "price": 10}, "quantity": 3}],
        },
        "fingerprint": "f" * 64,
        "received_at": 0.0,
        "base_url": "http://test",
    }
    values.update(overrides)
    return QuoteJob(**values)


def _make_processor(render_result=None, save_error=None, **settings_overrides):
    settings = Settings(download_token_secret=SECRET, **settings_overrides)

    renderer = MagicMock()
    renderer.render_html.return_value = "<h1>Devis</h1>"
    renderer.render_pdf = AsyncMock(
        return_value=render_result or RenderResult(pdf=b"%PDF-1.7")
    )
    if save_error is not None:
        renderer.save_pdf.side_effect = save_error
    else:
        renderer.save_pdf.return_value = "devis-1700000000000.pdf"

    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=DeliveryReport(sent=["a@x.com"]))

    return QuoteProcessor(settings, renderer, dispatcher), renderer, dispatcher


class TestProcess:
    @pytest.mark.asyncio
    async def test_successful_job_attaches_pdf_and_link(self):
        processor, renderer, dispatcher = _make_processor()

        outcome = await processor.process(_job())

        assert outcome.total == 30
        assert outcome.render.status == StageStatus.OK
        assert outcome.file_name == "devis-1700000000000.pdf"
        assert outcome.download_url.startswith(
            "http://test/download-devis/devis-1700000000000.pdf?token="
        )
        payload = verify_download_token(outcome.download_token, SECRET)
        assert payload["name"] == "devis-1700000000000.pdf"

        kwargs = dispatcher.dispatch.await_args.kwargs
        assert kwargs["pdf"] == b"%PDF-1.7"
        assert kwargs["file_name"] == "devis-1700000000000.pdf"
        assert kwargs["download_url"] == outcome.download_url
        assert dispatcher.dispatch.await_args.args[:4] == ("f" * 64, _job().body, "<h1>Devis</h1>", 30)

    @pytest.mark.asyncio
    async def test_public_base_url_overrides_request_url(self):
        processor, _, _ = _make_processor(public_base_url="https://api.bedoui.tn/")

        outcome = await processor.process(_job())

        assert outcome.download_url.startswith("https://api.bedoui.tn/download-devis/")

    @pytest.mark.asyncio
    async def test_render_failure_sends_without_attachment(self):
        processor, renderer, dispatcher = _make_processor(
            render_result=RenderResult(reason="browser missing")
        )

        outcome = await processor.process(_job())

        assert outcome.render.status == StageStatus.FAILED
        assert outcome.render.reason == "browser missing"
        assert outcome.file_name is None
        assert outcome.download_url is None
        renderer.save_pdf.assert_not_called()
        kwargs = dispatcher.dispatch.await_args.kwargs
        assert kwargs["pdf"] is None
        assert kwargs["download_url"] is None

    @pytest.mark.asyncio
    async def test_save_failure_is_a_failed_render_stage(self):
        processor, _, dispatcher = _make_processor(save_error=OSError("disk full"))

        outcome = await processor.process(_job())

        assert outcome.render.status == StageStatus.FAILED
        assert "disk full" in outcome.render.reason
        assert outcome.download_token is None
        assert dispatcher.dispatch.await_args.kwargs["pdf"] is None

    @pytest.mark.asyncio
    async def test_delivery_report_is_returned(self):
        processor, _, _ = _make_processor()

        outcome = await processor.process(_job())

        assert outcome.delivery.sent == ["a@x.com"]
