"""
Delivery Agent
==============
Emails the finished calculation to the customer.

- SendGridNotifier: PDF attached, plus a download link on the public site
- LogOnlyNotifier: used when SENDGRID_API_KEY is unset

The fulfillment orchestrator treats every failure here as log-only; the
artifact is already persisted and reachable through /download.

pip install sendgrid structlog
"""

import asyncio
import base64
from abc import ABC, abstractmethod
from xml.sax.saxutils import escape

import structlog
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Attachment, Disposition, FileContent, FileName, FileType, Mail

from schemas.order_definitions import PendingOrder

logger = structlog.get_logger(component="delivery_agent")

ATTACHMENT_NAME = "calculo-rescisao-detalhado.pdf"
EMAIL_SUBJECT = "Seu cálculo de rescisão detalhado"


class INotifier(ABC):
    """Best-effort delivery of a rendered artifact to the order's contact."""

    @abstractmethod
    async def send_artifact(self, order: PendingOrder, session_id: str, artifact: bytes) -> bool:
        """True when a message was handed to the provider."""
        pass


class LogOnlyNotifier(INotifier):
    """Records that a delivery would have happened."""

    async def send_artifact(self, order: PendingOrder, session_id: str, artifact: bytes) -> bool:
        logger.info(
            "email_skipped",
            reason="not_configured",
            correlation_id=order.correlation_id,
            session_id=session_id,
        )
        return False


class SendGridNotifier(INotifier):
    """
    SendGrid v3 mail send.

    The SDK is synchronous, so the request runs in a worker thread under a
    timeout.
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        public_base_url: str,
        timeout: float = 10.0,
        client: SendGridAPIClient | None = None,
    ):
        self.from_email = from_email
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or SendGridAPIClient(api_key)

    def download_url(self, session_id: str) -> str:
        return f"{self.public_base_url}/download/{session_id}"

    def build_message(self, order: PendingOrder, session_id: str, artifact: bytes) -> Mail:
        name = escape(order.order_input.display_name)
        link = self.download_url(session_id)
        message = Mail(
            from_email=self.from_email,
            to_emails=order.order_input.email,
            subject=EMAIL_SUBJECT,
            html_content=(
                f"<p>Olá, {name}!</p>"
                "<p>Seu pagamento foi confirmado. O cálculo detalhado segue em anexo.</p>"
                f'<p>Você também pode baixá-lo em: <a href="{link}">{link}</a></p>'
            ),
        )
        message.attachment = Attachment(
            FileContent(base64.b64encode(artifact).decode()),
            FileName(ATTACHMENT_NAME),
            FileType("application/pdf"),
            Disposition("attachment"),
        )
        return message

    async def send_artifact(self, order: PendingOrder, session_id: str, artifact: bytes) -> bool:
        log = logger.bind(correlation_id=order.correlation_id, session_id=session_id)
        message = self.build_message(order, session_id, artifact)

        response = await asyncio.wait_for(
            asyncio.to_thread(self._client.send, message),
            timeout=self.timeout,
        )
        if response.status_code >= 300:
            raise RuntimeError(f"SendGrid returned HTTP {response.status_code}")

        log.info(
            "email_sent",
            status_code=response.status_code,
            message_id=(response.headers or {}).get("X-Message-Id"),
        )
        return True


def build_notifier(config) -> INotifier:
    if config.sendgrid_api_key:
        return SendGridNotifier(
            api_key=config.sendgrid_api_key,
            from_email=config.email_from,
            public_base_url=config.public_base_url,
            timeout=config.email_timeout_seconds,
        )
    logger.warning("email_disabled", reason="SENDGRID_API_KEY not set")
    return LogOnlyNotifier()
