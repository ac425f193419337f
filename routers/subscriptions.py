from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import Optional, List, Any
from db.init import get_db
from models.user import User
from models.subscription import Subscription, SubscriptionStatus
from utils.admin import is_admin_user
from utils.deps import get_db_user
from utils.email import get_site_url
from utils.errors import AuthorizationError, DependencyUnavailable, NotFoundError, ValidationError
from utils.normalize import clean_string, normalize_address, normalize_service_day, normalize_services, to_number
from utils.notifications import dispatch_quietly, send_subscription_email
from pydantic import BaseModel
import os
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

PREVIEW_SERVICES = [
    {"id": "trash", "name": "Trash Can Take-Out & Return", "frequency": "Weekly", "monthlyRate": 19.99, "quantity": 1},
    {"id": "bin-wash", "name": "Bin Washing", "frequency": "Monthly or bi-monthly", "monthlyRate": 7, "quantity": 2},
    {"id": "poop-scoop", "name": "Poop Scoop", "frequency": "Bi-weekly (2 visits per month)", "monthlyRate": 25, "quantity": 1},
]

PREVIEW_ADDRESS = {
    "label": "Service address",
    "street": "123 Greenway Lane",
    "city": "Seattle",
    "state": "WA",
    "postalCode": "98101",
}

# --- Pydantic Models ---

class UpdateSubscriptionRequest(BaseModel):
    services: Optional[List[Any]] = None
    address: Optional[Any] = None
    planId: Optional[str] = None
    planName: Optional[str] = None
    total: Optional[Any] = None
    status: Optional[str] = None
    serviceDay: Optional[str] = None
    accessNotes: Optional[str] = None

class EmailPreviewRequest(BaseModel):
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    token: Optional[str] = None

def normalize_status(value: Optional[str]) -> Optional[SubscriptionStatus]:
    status = clean_string(value).upper()
    return SubscriptionStatus(status) if status in SubscriptionStatus.__members__ else None

# --- Endpoints ---

@router.get("")
def list_my_subscriptions(user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    subscriptions = db.query(Subscription).filter(Subscription.user_id == user.id).order_by(Subscription.id).all()
    return {"subscriptions": [subscription.to_dict() for subscription in subscriptions]}

@router.patch("/{subscription_id}")
def update_subscription(
    subscription_id: int,
    request: UpdateSubscriptionRequest,
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db)
):
    """
    Local-only edit of services, address and schedule. Billing changes are not
    pushed to Stripe from here.
    """
    services = normalize_services(request.services)
    if not services:
        raise ValidationError("At least one service is required.")

    address = normalize_address(request.address)
    if not address:
        raise ValidationError("Provide a complete address before updating the subscription.")

    query = db.query(Subscription).filter(Subscription.id == subscription_id)
    if not is_admin_user(user.email):
        query = query.filter(Subscription.user_id == user.id)
    subscription = query.first()
    if not subscription:
        raise NotFoundError("Subscription not found.")

    provided = request.model_fields_set
    if "planId" in provided:
        subscription.plan_id = clean_string(request.planId) or None
    if "planName" in provided:
        subscription.plan_name = clean_string(request.planName) or None
    if "total" in provided:
        total = to_number(request.total)
        if total is not None:
            subscription.monthly_total = total
    subscription.status = normalize_status(request.status) or subscription.status
    if "serviceDay" in provided:
        subscription.preferred_service_day = normalize_service_day(request.serviceDay)
    if "accessNotes" in provided:
        subscription.access_notes = clean_string(request.accessNotes, max_length=1000) or None

    address_id = address["id"]
    subscription.address_id = int(address_id) if str(address_id or "").isdigit() else None
    subscription.address_label = address["label"]
    subscription.address_street = address["street"]
    subscription.address_city = address["city"]
    subscription.address_state = address["state"]
    subscription.address_postal_code = address["postalCode"]
    subscription.services = services

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to update subscription {subscription_id}")
        raise DependencyUnavailable(
            "Subscriptions are temporarily unavailable. Please try again shortly.", status_code=503
        )
    db.refresh(subscription)
    logger.info(f"Subscription {subscription.id} updated by user {user.id}")

    owner = db.query(User).filter(User.id == subscription.user_id).first()
    email_dispatched = owner is not None and dispatch_quietly(
        "subscription update email",
        send_subscription_email,
        owner.email,
        services,
        address,
        updated=True,
        first_name=owner.first_name,
        last_name=owner.last_name,
        service_day=subscription.preferred_service_day,
        plan_name=subscription.plan_name,
        monthly_total=subscription.monthly_total,
        access_notes=subscription.access_notes,
    )

    return {
        "message": "Subscription updated successfully."
        if email_dispatched
        else "Subscription updated, but we could not send the confirmation email.",
        "emailDispatched": email_dispatched,
        "subscription": subscription.to_dict(),
    }

@router.post("/email-preview")
def email_preview(request: EmailPreviewRequest):
    email = clean_string(request.email).lower()
    if not email:
        raise ValidationError("Provide an email address to send the preview to.")

    if os.getenv("ENVIRONMENT", "development") == "production":
        preview_token = os.getenv("EMAIL_PREVIEW_TOKEN", "").strip()
        if not preview_token:
            raise AuthorizationError("Email previews are disabled in production.")
        if request.token != preview_token:
            raise AuthorizationError("Invalid preview token.")

    sent = dispatch_quietly(
        "preview subscription email",
        send_subscription_email,
        email,
        PREVIEW_SERVICES,
        PREVIEW_ADDRESS,
        first_name=request.firstName or "Trash Panda friend",
        last_name=request.lastName or "",
        service_day="MONDAY",
        plan_name="Curbside Essentials",
        monthly_total=58.0,
        access_notes="Gate code is 1234; bins are on the right side of the garage.",
        manage_url=f"{get_site_url()}/dash/manage",
    )
    return {
        "success": sent,
        "message": "Preview email sent." if sent else "Could not send preview email. Check SMTP settings and try again.",
    }
