"""
SMTP delivery for Paylive emails.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

SMTP_TIMEOUT_SECONDS = 30


def build_message(
    sender: str,
    to_email: str,
    subject: str,
    body: str,
    html_body: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> MIMEText | MIMEMultipart:
    """Plain text message, or text + html alternatives when ``html_body`` is given."""
    if html_body:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
    else:
        msg = MIMEText(body, "plain", "utf-8")

    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to_email
    if reply_to:
        msg["Reply-To"] = reply_to
    return msg


def _deliver(settings: Settings, to_email: str, message: str) -> None:
    if settings.SMTP_SECURE:
        server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS)
    else:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS)
        server.starttls()
    with server:
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(settings.SMTP_USERNAME, to_email, message)


async def send_email(
    to_email: str,
    subject: str,
    body: str,
    html_body: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bool:
    """
    Send an email from the Paylive SMTP account.

    The blocking SMTP exchange runs in a worker thread. Returns False when
    SMTP is not configured or delivery failed; the error is logged.
    """
    settings = get_settings()
    if not (settings.SMTP_USERNAME and settings.SMTP_PASSWORD):
        logger.warning(f"SMTP credentials missing, email '{subject}' to {to_email} not sent")
        return False

    sender = formataddr((settings.DEFAULT_FROM_NAME, settings.SMTP_USERNAME))
    msg = build_message(sender, to_email, subject, body, html_body, reply_to)

    try:
        await asyncio.to_thread(_deliver, settings, to_email, msg.as_string())
    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP authentication failed for {settings.SMTP_USERNAME}: {e}")
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Email to {to_email} failed: {type(e).__name__}: {e}")
        return False

    logger.info(f"Email '{subject}' sent to {to_email}")
    return True
