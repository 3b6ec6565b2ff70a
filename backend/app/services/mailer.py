"""
Quote email delivery.

SmtpMailer sends one EmailMessage over SMTP. smtplib is blocking, so each send
runs in a worker thread with a socket timeout to keep a stuck server from
holding the queue forever.

QuoteDispatcher sends the rendered quote to every admin recipient and to the
customer, one individually addressed message per recipient, and records each
successful send in the duplicate suppression store so that no address is
notified twice for the same fingerprint.
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Optional

from app.config import Settings
from app.models.quote import DeliveryReport, StageStatus
from app.services.dedup_store import DuplicateSuppressionStore
from app.services.quote_renderer import format_amount

logger = logging.getLogger(__name__)

SENDER_DISPLAY_NAME = "Système de Devis"


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class SmtpMailer:
    """Blocking SMTP client wrapped for use from the event loop."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def configured(self) -> bool:
        return self.settings.smtp_configured

    @property
    def sender(self) -> str:
        return self.settings.smtp_user

    def _connect(self) -> smtplib.SMTP:
        s = self.settings
        if s.smtp_port == 465:
            return smtplib.SMTP_SSL(
                s.smtp_host,
                s.smtp_port,
                timeout=s.smtp_timeout,
                context=ssl.create_default_context(),
            )
        client = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout)
        client.ehlo()
        if client.has_extn("starttls"):
            client.starttls(context=ssl.create_default_context())
            client.ehlo()
        return client

    def _send_sync(self, message: EmailMessage, recipient: str) -> str:
        with self._connect() as client:
            client.login(self.settings.smtp_user, self.settings.smtp_password)
            client.send_message(message, from_addr=self.sender, to_addrs=[recipient])
        return message["Message-ID"]

    async def send(self, message: EmailMessage, recipient: str) -> str:
        """Send a message to a single envelope recipient; returns the Message-ID."""
        return await asyncio.to_thread(self._send_sync, message, recipient)


# ---------------------------------------------------------------------------
# Message building
# ---------------------------------------------------------------------------

def admin_subject(name: str, total: float, currency: str) -> str:
    return f"🔔 Nouvelle demande de devis - {name} ({format_amount(total)} {currency})"


def customer_subject(name: str, total: float, currency: str) -> str:
    return f"Votre devis - {name} ({format_amount(total)} {currency})"


def _plain_text_summary(body: dict, total: float, currency: str, download_url: Optional[str]) -> str:
    lines = [
        "Demande de devis",
        "",
        f"Client : {body.get('name', '')}",
        f"Email : {body.get('email', '')}",
        f"Téléphone : {body.get('phone', '')}",
    ]
    if body.get("company"):
        lines.append(f"Société : {body['company']}")
    lines.append(f"Total : {format_amount(total)} {currency}")
    if body.get("message"):
        lines.extend(["", str(body["message"])])
    if download_url:
        lines.extend(["", f"Télécharger le devis : {download_url}"])
    return "\n".join(lines)


def build_quote_message(
    *,
    sender: str,
    recipient: str,
    subject: str,
    body: dict,
    html: str,
    total: float,
    currency: str,
    pdf: Optional[bytes] = None,
    file_name: Optional[str] = None,
    download_url: Optional[str] = None,
) -> EmailMessage:
    """Build one individually addressed quote email, with the PDF attached when available."""
    message = EmailMessage()
    message["From"] = formataddr((SENDER_DISPLAY_NAME, sender))
    message["To"] = recipient
    message["Subject"] = subject
    message["Message-ID"] = make_msgid()
    message.set_content(_plain_text_summary(body, total, currency, download_url))
    message.add_alternative(html, subtype="html")
    if pdf:
        message.add_attachment(
            pdf,
            maintype="application",
            subtype="pdf",
            filename=file_name or "devis.pdf",
        )
    return message


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class QuoteDispatcher:
    """Delivers a rendered quote to admins and the customer at most once each."""

    def __init__(
        self,
        settings: Settings,
        store: DuplicateSuppressionStore,
        mailer: SmtpMailer,
    ) -> None:
        self.settings = settings
        self.store = store
        self.mailer = mailer

    def _admin_list(self) -> list[str]:
        # Order preserved, duplicates in the configured list removed
        return list(dict.fromkeys(self.settings.admin_recipients))

    async def _send_one(
        self,
        report: DeliveryReport,
        fingerprint: str,
        recipient: str,
        message: EmailMessage,
        kind: str,
    ) -> None:
        try:
            message_id = await self.mailer.send(message, recipient)
        except Exception as exc:
            logger.error(f"Failed to send {kind} quote email to {recipient}: {exc}")
            report.failed[recipient] = str(exc) or exc.__class__.__name__
            return
        self.store.mark_notified(fingerprint, recipient)
        report.sent.append(recipient)
        logger.info(f"{kind.capitalize()} quote email sent to {recipient} id={message_id}")

    async def dispatch(
        self,
        fingerprint: str,
        body: dict,
        html: str,
        total: float,
        pdf: Optional[bytes] = None,
        file_name: Optional[str] = None,
        download_url: Optional[str] = None,
    ) -> DeliveryReport:
        """
        Email the quote to every admin and the customer not yet notified.

        Each recipient gets its own message; one failing address does not stop
        the others. The fingerprint is marked completed once every send has
        been attempted. When SMTP is not configured nothing is sent and the
        report status is SKIPPED.
        """
        if not self.mailer.configured:
            logger.warning(
                "SMTP is not configured (SMTP_HOST / SMTP_USER / SMTP_PASS); "
                f"quote {fingerprint[:12]} accepted but no email was sent"
            )
            return DeliveryReport(status=StageStatus.SKIPPED, reason="smtp_not_configured")

        report = DeliveryReport()
        name = body.get("name", "")
        currency = self.settings.currency
        admins = self._admin_list()

        message_args = dict(
            sender=self.mailer.sender,
            body=body,
            html=html,
            total=total,
            currency=currency,
            pdf=pdf,
            file_name=file_name,
            download_url=download_url,
        )

        for address in admins:
            if address in self.store.recipients_already_notified(fingerprint):
                report.skipped.append(address)
                continue
            message = build_quote_message(
                recipient=address,
                subject=admin_subject(name, total, currency),
                **message_args,
            )
            await self._send_one(report, fingerprint, address, message, "admin")

        customer = (body.get("email") or "").strip()
        if customer and customer not in admins:
            if customer in self.store.recipients_already_notified(fingerprint):
                report.skipped.append(customer)
            else:
                message = build_quote_message(
                    recipient=customer,
                    subject=customer_subject(name, total, currency),
                    **message_args,
                )
                await self._send_one(report, fingerprint, customer, message, "customer")

        self.store.mark_completed(fingerprint)

        if report.failed:
            report.status = StageStatus.FAILED if not report.sent else StageStatus.OK
            report.reason = f"{len(report.failed)} recipient(s) failed"
        return report
