"""
SMTP delivery of queued mail jobs.

One call delivers one message (HTML body, To plus Bcc) over STARTTLS. Bcc
addresses go into the SMTP envelope only and never into a header. Settings
are read from the environment on every call so a restarted worker picks up
rotated credentials.

Failures are reported, not raised: the dispatch worker records the error on
the job and retries it on a later run.
"""

import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Mapping, Optional, Tuple

from notifier.config import DEFAULT_SMTP_PORT, SMTP_TIMEOUT_SECONDS
from notifier.logger import get_logger

logger = get_logger(__name__)

REQUIRED_SMTP_SETTINGS = ("SMTP_SERVER", "SMTP_USER", "SMTP_PASSWORD")


def _smtp_settings() -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Read SMTP_SERVER, SMTP_USER, SMTP_PASSWORD and SMTP_PORT (default 587).

    Returns:
        Tuple of (settings, error_msg); settings is None when one is missing
    """
    settings: Dict[str, Any] = {name: os.getenv(name) for name in REQUIRED_SMTP_SETTINGS}
    for name in REQUIRED_SMTP_SETTINGS:
        if not settings[name]:
            return None, f"{name} environment variable is not set"
    settings["SMTP_PORT"] = int(os.getenv("SMTP_PORT", DEFAULT_SMTP_PORT))
    return settings, None


def _envelope(message: Mapping[str, Any]) -> Tuple[str, List[str]]:
    to = str(message.get("to") or "").strip()
    bcc = [str(address).strip() for address in message.get("bcc") or [] if str(address).strip()]
    return to, ([to] if to else []) + bcc


def send_email(message: Mapping[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Deliver a queued message.

    Args:
        message: Dictionary with 'to', optional 'bcc' list, 'subject', 'html'

    Returns:
        Tuple of (success, error_msg); error_msg is None on success
    """
    to, recipients = _envelope(message)
    if not recipients:
        error_msg = "Message has no recipients"
        logger.warning(error_msg)
        return False, error_msg

    try:
        settings, error_msg = _smtp_settings()
        if settings is None:
            logger.error(error_msg)
            return False, error_msg

        sender = settings["SMTP_USER"]
        msg = MIMEMultipart('alternative')
        msg['From'] = sender
        msg['To'] = to or sender
        msg['Subject'] = message.get("subject") or ""
        msg.attach(MIMEText(message.get("html") or "", 'html', 'utf-8'))

        logger.debug(f"Connecting to {settings['SMTP_SERVER']}:{settings['SMTP_PORT']}")
        with smtplib.SMTP(settings["SMTP_SERVER"], settings["SMTP_PORT"], timeout=SMTP_TIMEOUT_SECONDS) as server:
            server.starttls()
            server.login(sender, settings["SMTP_PASSWORD"])
            server.send_message(msg, from_addr=sender, to_addrs=recipients)

        logger.info(f"Email sent to {len(recipients)} recipient(s)")
        return True, None

    except Exception as e:
        error_msg = f"Failed to send email: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return False, error_msg
