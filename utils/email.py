import os
import ssl
import smtplib
import logging
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

logger = logging.getLogger(__name__)

BRAND_COLORS = {
    "primary": "#16a34a",
    "dark": "#0f2f24",
    "light": "#f0fdf4",
    "slate": "#0f172a",
}

def get_from_address() -> str:
    return (os.getenv("SMTP_FROM") or os.getenv("SMTP_USER") or "").strip()

def get_site_url() -> str:
    return (os.getenv("SITE_URL") or "https://thetrashpanda.net").rstrip("/")

def get_app_base_url() -> str:
    return (os.getenv("APP_BASE_URL") or "http://localhost:3000").rstrip("/")

def get_smtp_settings():
    host = os.getenv("SMTP_HOST", "").strip()
    user = os.getenv("SMTP_USER", "").strip()
    password = os.getenv("SMTP_PASS", "")
    try:
        port = int(os.getenv("SMTP_PORT", ""))
    except ValueError:
        port = None

    if not host or port is None or not user or not password:
        raise RuntimeError(
            "SMTP configuration is incomplete. Please set SMTP_HOST, SMTP_PORT, SMTP_USER, and SMTP_PASS."
        )
    return host, port, user, password

def send_email(to: str, subject: str, html: str, text: str, reply_to: Optional[str] = None) -> str:
    """Send one message over SMTP and return its Message-ID. Raises on any failure."""
    from_address = get_from_address()
    if not from_address:
        raise RuntimeError("Email routing is not configured. Please set SMTP_FROM (or SMTP_USER).")
    host, port, user, password = get_smtp_settings()

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = from_address
    message["To"] = to
    message["Message-ID"] = make_msgid(domain=from_address.split("@")[-1])
    if reply_to:
        message["Reply-To"] = reply_to
    message.set_content(text)
    message.add_alternative(html, subtype="html")

    context = ssl.create_default_context()
    if port == 465:
        with smtplib.SMTP_SSL(host, port, timeout=10, context=context) as smtp:
            smtp.login(user, password)
            smtp.send_message(message)
    else:
        with smtplib.SMTP(host, port, timeout=10) as smtp:
            smtp.ehlo()
            smtp.starttls(context=context)
            smtp.ehlo()
            smtp.login(user, password)
            smtp.send_message(message)

    logger.info(f"Sent email '{subject}' to {to}")
    return message["Message-ID"]
