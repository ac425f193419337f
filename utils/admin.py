import os
from typing import Iterable, List, Optional


def get_admin_emails() -> List[str]:
    raw = os.getenv("ADMIN_EMAILS", "")
    return [value.strip().lower() for value in raw.split(",") if value.strip()]


def is_admin_user(email: Optional[str], admin_emails: Optional[Iterable[str]] = None) -> bool:
    """Admin status is derived from the allowlist on every call, never stored."""
    if not email or not email.strip():
        return False
    if admin_emails is None:
        admin_emails = get_admin_emails()
    return email.strip().lower() in set(admin_emails)
