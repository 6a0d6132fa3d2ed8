"""
Mail Gateway

The core only needs sendEmail({to, subject, htmlBody, textBody}) -> messageId.
HttpMailGateway posts to a transactional mail API with httpx;
LogOnlyMailGateway is used when MAIL_GATEWAY_URL is empty (development,
tests, or organizations without email configured).
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import settings
from ..exceptions import NotificationDeliveryError
from ..models.notification import Channel

logger = logging.getLogger(__name__)


@dataclass
class MailMessage:
    to: str
    subject: str
    html_body: str
    text_body: str
    from_address: Optional[str] = None


class MailGateway:
    """Interface: send one message, return the provider message id."""

    def send_email(self, message: MailMessage) -> str:
        raise NotImplementedError


class LogOnlyMailGateway(MailGateway):
    def send_email(self, message: MailMessage) -> str:
        message_id = f"log-{uuid.uuid4()}"
        logger.info(f"[mail:log-only] to={message.to} subject={message.subject!r} id={message_id}")
        return message_id


class HttpMailGateway(MailGateway):
    """
    JSON POST to {MAIL_GATEWAY_URL}. 4xx responses are permanent failures,
    5xx / 429 / transport errors are retryable.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.from_address = from_address or settings.mail_from_address
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def send_email(self, message: MailMessage) -> str:
        body = {
            "from": message.from_address or self.from_address,
            "to": message.to,
            "subject": message.subject,
            "htmlBody": message.html_body,
            "textBody": message.text_body,
        }
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=body, headers=self._headers(), timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(Channel.EMAIL.value, f"Mail gateway unreachable: {e}")

        if response.status_code >= 400:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise NotificationDeliveryError(
                Channel.EMAIL.value,
                f"Mail gateway returned {response.status_code}: {response.text[:200]}",
                retryable=retryable,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        return str(data.get("messageId") or data.get("id") or response.headers.get("X-Message-Id") or uuid.uuid4())


def get_mail_gateway() -> MailGateway:
    if settings.mail_gateway_url:
        return HttpMailGateway(
            settings.mail_gateway_url,
            api_key=settings.mail_gateway_api_key or None,
            timeout=settings.webhook_timeout_seconds,
        )
    return LogOnlyMailGateway()
