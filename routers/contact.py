from fastapi import APIRouter
from typing import Optional
from utils.errors import DependencyUnavailable, ValidationError
from utils.normalize import clean_string
from utils.notifications import send_contact_email
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_FREQUENCY_LABELS = {
    "weekly": "Weekly roll-out and return",
    "biweekly": "Every other week",
    "vacation": "Seasonal or vacation coverage",
    "unsure": "Not sure yet",
}

class ContactRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    serviceFrequency: Optional[str] = None

@router.post("")
def submit_contact(request: ContactRequest):
    first_name = clean_string(request.firstName)
    last_name = clean_string(request.lastName)
    email = clean_string(request.email)
    message = clean_string(request.message)
    if not first_name or not last_name or not email or not message:
        raise ValidationError("First name, last name, email, and message are required.")
    if len(message) > 500:
        raise ValidationError("Message must be 500 characters or fewer.")

    frequency_label = SERVICE_FREQUENCY_LABELS.get(clean_string(request.serviceFrequency), "Not specified")

    try:
        send_contact_email(
            first_name,
            last_name,
            email,
            message,
            phone=clean_string(request.phone),
            company=clean_string(request.company),
            frequency_label=frequency_label,
        )
    except Exception:
        logger.exception(f"Failed to send contact email from {email}")
        raise DependencyUnavailable("We could not send your message. Please try again later.", status_code=500)

    return {"success": True}
