"""
Notification emails fired as side effects of state changes.

Delivery is never part of an operation's success contract: callers go through
dispatch_quietly, which logs failures and reports them as False. The contact form
is the exception: there the send is the whole request.
"""
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from utils import email as mailer
from utils.email_templates import (
    build_contact_email,
    build_custom_estimate_email,
    build_signup_welcome_email,
    build_subscription_email,
)

logger = logging.getLogger(__name__)

def dispatch_quietly(description: str, send: Callable[..., Any], *args, **kwargs) -> bool:
    try:
        send(*args, **kwargs)
        return True
    except Exception:
        logger.exception(f"Failed to send {description}")
        return False

def send_signup_welcome_email(to: str, first_name: Optional[str] = None, last_name: Optional[str] = None) -> str:
    message = build_signup_welcome_email(first_name, last_name)
    return mailer.send_email(to, message["subject"], message["html"], message["text"])

def estimate_review_url(estimate_id: int) -> str:
    return f"{mailer.get_site_url()}/dash/custom-plans?estimate={estimate_id}"

def send_custom_estimate_email(to: str, estimate: Dict[str, Any], first_name: Optional[str] = None,
                               last_name: Optional[str] = None) -> str:
    message = build_custom_estimate_email(
        estimate,
        first_name=first_name,
        last_name=last_name,
        review_url=estimate_review_url(estimate["id"]),
    )
    return mailer.send_email(to, message["subject"], message["html"], message["text"])

def send_subscription_email(to: str, services: List[Dict[str, Any]], address: Dict[str, Any],
                            updated: bool = False, **details) -> str:
    message = build_subscription_email(services, address, updated=updated, **details)
    return mailer.send_email(to, message["subject"], message["html"], message["text"])

def get_contact_recipient() -> str:
    return (os.getenv("CONTACT_RECIPIENT") or os.getenv("SMTP_USER") or "").strip()

def send_contact_email(first_name: str, last_name: str, email: str, message: str, phone: str = "",
                       company: str = "", frequency_label: str = "Not specified") -> str:
    """Forward a website contact request to the business inbox. Replies go to the sender."""
    recipient = get_contact_recipient()
    if not recipient:
        raise RuntimeError("Email routing is not configured. Please set CONTACT_RECIPIENT (or SMTP_USER).")
    content = build_contact_email(first_name, last_name, email, message, phone=phone, company=company,
                                  frequency_label=frequency_label)
    return mailer.send_email(recipient, content["subject"], content["html"], content["text"], reply_to=email)
