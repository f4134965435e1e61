"""
Outbound notifications: branded HTML email over SMTP and JSON webhooks.

Nothing here is called inside a request. The outbox dispatcher drives these
and decides what a failure means.
"""

import html
import logging
import smtplib
import threading
import time
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

import httpx

from bankswift.core.config import settings

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A notification could not be delivered; the dispatcher retries it."""


def render_email(title: str, body_html: str) -> str:
    """Wrap ``body_html`` in the branded layout."""
    brand = html.escape(settings.BRAND_NAME)
    primary = settings.BRAND_PRIMARY
    year = datetime.now().year
    return f"""<!doctype html>
<html><head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1"><title>{html.escape(title)}</title></head>
<body style="font-family:Arial,Helvetica,sans-serif;background:#f5f7fb;padding:20px;">
  <div style="max-width:680px;margin:0 auto;background:#fff;border-radius:6px;overflow:hidden">
    <div style="background:{primary};padding:12px;color:#fff;font-weight:700">{brand}</div>
    <div style="padding:20px;color:#333"><h2>{html.escape(title)}</h2>{body_html}</div>
    <div style="padding:12px;background:#f2f6fa;color:#8aa0b9;font-size:12px">&copy; {year} {brand}</div>
  </div>
</body></html>"""


class TokenBucket:
    """
    Token-bucket rate limiter shared by dispatcher workers.

    ``acquire`` blocks until a token is available.
    """

    def __init__(self, rate: float, capacity: Optional[float] = None, clock=time.monotonic, sleep=time.sleep):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = capacity if capacity is not None else max(1.0, rate)
        self._tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self) -> None:
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait = (1 - self._tokens) / self.rate
            self._sleep(wait)


class Notifier:
    """Delivers email and webhooks. Raises DeliveryError on failure."""

    def __init__(self, http_client: Optional[httpx.Client] = None):
        self._http = http_client

    @property
    def smtp_configured(self) -> bool:
        return bool(settings.SMTP_HOST and settings.SMTP_USER and settings.SMTP_PASSWORD)

    def send_email(self, to: str, subject: str, html_body: str) -> bool:
        """
        Send one HTML email. Returns False when SMTP is not configured
        (the message is skipped, not retried).
        """
        if not to:
            raise DeliveryError("email has no recipient")
        if not self.smtp_configured:
            logger.warning("SMTP not configured; skipping email to %s (%s)", to, subject)
            return False

        sender = settings.MAIL_FROM or settings.SMTP_USER
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to
        msg.attach(MIMEText("Please view this email in an HTML-compatible email client.", "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            if settings.SMTP_PORT == 465:
                smtp = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS)
            else:
                smtp = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS)
                smtp.starttls()
            try:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                smtp.sendmail(sender, [to], msg.as_string())
            finally:
                smtp.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"smtp: {e}") from e

        logger.info("Email sent to %s: %s", to, subject)
        return True

    def post_webhook(self, url: str, event: str, data: Any) -> int:
        """POST ``{"type": event, "data": data}``. Non-2xx counts as failure."""
        body = {"type": event, "data": data}
        try:
            if self._http is not None:
                response = self._http.post(url, json=body, timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
            else:
                with httpx.Client(timeout=settings.WEBHOOK_TIMEOUT_SECONDS) as client:
                    response = client.post(url, json=body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DeliveryError(f"webhook: {e}") from e

        if response.status_code >= 300:
            raise DeliveryError(f"webhook: {url} answered {response.status_code}")
        logger.info("Webhook %s delivered to %s", event, url)
        return response.status_code
