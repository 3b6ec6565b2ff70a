"""
Quote document rendering.

Turns a quote request into an HTML document (Jinja2 template) and then into an
A4 PDF using headless Chromium driven by Playwright.

Rendering never aborts the pipeline:
  - a missing or broken template falls back to a minimal inline document;
  - a browser failure (launch error, content timeout, ...) is reported as a
    failed RenderResult so the caller can still email the quote without an
    attachment.

Public API:
  compute_total(products) -> float
  format_amount(value) -> str
  QuoteRenderer(settings).render_html(body) -> str
  QuoteRenderer(settings).render_pdf(html) -> RenderResult
  QuoteRenderer(settings).save_pdf(pdf_bytes) -> str
"""

import logging
import math
import os
import time
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from playwright.async_api import async_playwright

from app.config import Settings
from app.models.quote import RenderResult

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "devis-pdf.html"

_PACKAGE_DIR = Path(__file__).resolve().parent.parent

_FALLBACK_TEMPLATE = (
    "<!doctype html><html><head><meta charset=\"utf-8\"/><title>Devis</title></head>"
    "<body><h1>Devis</h1><p>Client: {{ name }} - {{ email }} - {{ phone }}</p>"
    "<p>Total: {{ total_display }} {{ currency }}</p></body></html>"
)

_BROWSER_ARGS = [
    "--disable-web-security",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]

_PDF_MARGIN = {"top": "10mm", "bottom": "10mm", "left": "10mm", "right": "10mm"}


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def _to_number(value: Any) -> float:
    """Coerce a cart value to a finite float; anything unusable counts as 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _explicit_line_total(item: dict) -> Optional[float]:
    total = item.get("totalPrice")
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        return None
    return float(total) if math.isfinite(total) else 0.0


def line_total(item: Any) -> float:
    """Total of one line item: the precomputed totalPrice or quantity x unit price."""
    if not isinstance(item, dict):
        return 0.0
    explicit = _explicit_line_total(item)
    if explicit is not None:
        return explicit
    product = item.get("product")
    if not isinstance(product, dict):
        return 0.0
    return _to_number(item.get("quantity")) * _to_number(product.get("price"))


def compute_total(products: Optional[Iterable[Any]]) -> float:
    """
    Sum of all line totals.

    Never raises and never returns NaN: malformed lines contribute 0.
    """
    return sum((line_total(item) for item in products or []), 0.0)


def format_amount(value: float) -> str:
    """Human-readable amount: thousands separators, at most 3 decimals, no trailing zeros."""
    text = f"{value:,.3f}".rstrip("0").rstrip(".")
    return text or "0"


def _build_rows(products: Iterable[Any]) -> list[dict[str, Any]]:
    rows = []
    for item in products or []:
        if not isinstance(item, dict):
            continue
        product = item.get("product") if isinstance(item.get("product"), dict) else {}
        rows.append({
            "name": product.get("name") or "",
            "unit_price": format_amount(_to_number(product.get("price"))),
            "quantity": item.get("quantity", ""),
            "line_total": format_amount(line_total(item)),
        })
    return rows


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------

class QuoteRenderer:
    """Renders quote documents to HTML and PDF using the configured template."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    # ------------------------------------------------------------------
    # Template lookup
    # ------------------------------------------------------------------

    def template_candidates(self) -> list[Path]:
        """Paths checked for the document template, in priority order."""
        cwd = Path.cwd()
        candidates: list[Path] = []

        configured = self.settings.pdf_template_path
        if configured:
            path = Path(configured)
            if path.is_absolute():
                candidates.append(path)
            else:
                candidates.extend([
                    cwd / path,
                    _PACKAGE_DIR / path,
                    cwd / "app" / path,
                    cwd / "backend" / path,
                ])

        candidates.extend([
            cwd / "templates" / TEMPLATE_NAME,
            cwd / "backend" / "templates" / TEMPLATE_NAME,
            _PACKAGE_DIR / "templates" / TEMPLATE_NAME,
        ])
        return candidates

    def find_template(self) -> Optional[Path]:
        for candidate in self.template_candidates():
            if candidate.is_file():
                return candidate
        return None

    # ------------------------------------------------------------------
    # HTML
    # ------------------------------------------------------------------

    def _context(self, body: dict) -> dict[str, Any]:
        products = body.get("products") or []
        total = compute_total(products)
        return {
            "name": body.get("name", ""),
            "email": body.get("email", ""),
            "phone": body.get("phone", ""),
            "company": body.get("company"),
            "message": body.get("message"),
            "products": products,
            "rows": _build_rows(products),
            "total": total,
            "total_display": format_amount(total),
            "currency": self.settings.currency,
            "company_name": self.settings.company_name,
            "issued_on": date.today().strftime("%d/%m/%Y"),
        }

    def render_fallback(self, context: dict[str, Any]) -> str:
        env = Environment(autoescape=True)
        return env.from_string(_FALLBACK_TEMPLATE).render(**context)

    def render_html(self, body: dict) -> str:
        """
        Fill the document template with the quote.

        Falls back to a minimal inline document (name, email, phone, total)
        when no template is found or the template fails to render.
        """
        context = self._context(body)
        template_path = self.find_template()
        if template_path is None:
            logger.warning("No quote template found; using the inline fallback")
            return self.render_fallback(context)

        try:
            env = Environment(
                loader=FileSystemLoader(str(template_path.parent)),
                autoescape=select_autoescape(["html", "htm", "xml"]),
            )
            return env.get_template(template_path.name).render(**context)
        except (TemplateError, OSError) as exc:
            logger.warning(f"Quote template {template_path} failed to render, using fallback: {exc}")
            return self.render_fallback(context)

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    async def render_pdf(self, html: str) -> RenderResult:
        """
        Print the HTML to an A4 PDF with headless Chromium.

        Content loading is bounded by ``pdf_render_timeout``. Any failure is
        returned as ``RenderResult(pdf=None, reason=...)``.
        """
        timeout_ms = self.settings.pdf_render_timeout * 1000
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(
                    headless=True,
                    args=_BROWSER_ARGS,
                    executable_path=self.settings.chromium_executable_path,
                )
                try:
                    context = await browser.new_context(
                        viewport={"width": 1920, "height": 1080},
                        device_scale_factor=2,
                    )
                    page = await context.new_page()
                    await page.set_content(html, timeout=timeout_ms, wait_until="networkidle")
                    pdf = await page.pdf(
                        format="A4",
                        margin=_PDF_MARGIN,
                        print_background=True,
                        prefer_css_page_size=True,
                        scale=0.8,
                    )
                finally:
                    await browser.close()
        except Exception as exc:
            logger.error(f"PDF rendering failed: {exc}")
            return RenderResult(pdf=None, reason=str(exc) or exc.__class__.__name__)

        if not pdf:
            return RenderResult(pdf=None, reason="renderer returned an empty document")
        return RenderResult(pdf=pdf)

    def save_pdf(self, pdf: bytes) -> str:
        """
        Write the PDF into the storage directory and return its file name.

        Files are named devis-<millisecond timestamp>.pdf. The directory is
        created if missing. Raises OSError when the file cannot be written.
        """
        directory = self.settings.pdf_dir
        os.makedirs(directory, exist_ok=True)
        file_name = f"devis-{int(time.time() * 1000)}.pdf"
        path = os.path.join(directory, file_name)
        with open(path, "wb") as fh:
            fh.write(pdf)
        logger.info(f"Quote PDF written to {path}")
        return file_name
