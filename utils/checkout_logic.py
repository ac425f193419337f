"""
Checkout reconciliation.

start_checkout stores a PENDING CheckoutSession snapshot and hands the browser to
Stripe. finalize_checkout folds the returned outcome back in: the session moves
to COMPLETED or CANCELLED once, and a completed session is upserted into a
Subscription keyed by the Stripe subscription id, so repeating the call (page
refresh, back button, double fetch) never activates twice.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.subscription import (
    CheckoutSession,
    CheckoutStatus,
    Subscription,
    SubscriptionStatus,
    can_transition_checkout,
)
from models.user import User
from utils import stripe_client
from utils.email import get_app_base_url
from utils.errors import DependencyUnavailable, NotFoundError, ValidationError
from utils.normalize import (
    address_summary,
    clean_string,
    normalize_address,
    normalize_service_day,
    normalize_services,
    services_total,
)

logger = logging.getLogger(__name__)

FINALIZE_OUTCOMES = ("success", "cancelled")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

@dataclass
class FinalizeResult:
    """
    Outcome of a finalize call. The primary effect (checkout state) and the
    secondary Subscription write are reported separately: a failed sync leaves
    status "completed" with subscription_synced False.
    """
    status: str
    message: str
    stripe_status: Optional[str] = None
    stripe_payment_status: Optional[str] = None
    already_completed: bool = False
    subscription_id: Optional[int] = None
    subscription_synced: bool = False
    subscription_error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        response = {"status": self.status, "message": self.message}
        if self.status == "completed" and not self.already_completed:
            response["stripeStatus"] = self.stripe_status
            response["stripePaymentStatus"] = self.stripe_payment_status
        return response

# --- Start ---

def start_checkout(
    db: Session,
    user: User,
    services: Any,
    address: Any,
    plan_id: Optional[str] = None,
    plan_name: Optional[str] = None,
    access_notes: Any = None,
    service_day: Any = None,
) -> str:
    """Create the pending record and the Stripe session. Returns the redirect URL."""
    normalized_services = normalize_services(services)
    if not normalized_services:
        raise ValidationError("Add at least one service before checking out.")

    if not isinstance(address, dict):
        raise ValidationError("Select a valid service address before checking out.")
    normalized_address = normalize_address(address)
    if not normalized_address:
        raise ValidationError("Service address is incomplete.")

    summary = address_summary(normalized_address)
    monthly_total = services_total(normalized_services)
    notes = clean_string(access_notes, max_length=1000) or None
    day = normalize_service_day(service_day)
    plan_id = clean_string(plan_id) or None
    plan_name = clean_string(plan_name) or None
    address_id = normalized_address["id"]

    record = CheckoutSession(
        user_id=user.id,
        status=CheckoutStatus.PENDING,
        plan_id=plan_id,
        plan_name=plan_name,
        address_id=int(address_id) if str(address_id or "").isdigit() else None,
        address_label=normalized_address["label"],
        address_street=normalized_address["street"],
        address_city=normalized_address["city"],
        address_state=normalized_address["state"],
        address_postal_code=normalized_address["postalCode"],
        address_summary=summary,
        services=normalized_services,
        monthly_total=monthly_total,
        access_notes=notes,
        preferred_service_day=day,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    base_url = get_app_base_url()
    result = stripe_client.create_checkout_session(
        items=normalized_services,
        customer_email=user.email,
        success_url=f"{base_url}/dash?checkout=success&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/dash?checkout=cancelled&session_id={{CHECKOUT_SESSION_ID}}",
        metadata={
            "userId": user.id,
            "planId": plan_id,
            "planName": plan_name,
            "addressId": address_id,
            "addressLabel": normalized_address["label"],
            "addressSummary": summary,
            "monthlyTotal": f"{monthly_total:.2f}",
            "accessNotes": notes[:500] if notes else None,
            "preferredServiceDay": day,
            "checkoutSessionId": record.id,
        },
        idempotency_key=f"checkout-{record.id}",
    )

    if not result.get("success"):
        logger.error(f"Failed to create Stripe checkout for checkout session {record.id}: {result.get('error')}")
        record.status = CheckoutStatus.CANCELLED
        record.completed_at = utcnow()
        db.commit()
        if not result.get("configured", True):
            raise DependencyUnavailable("Checkout is unavailable. Please try again later.", status_code=500)
        raise DependencyUnavailable("Unable to start checkout. Please try again.", status_code=500)

    record.stripe_session_id = result["session_id"]
    db.commit()
    logger.info(f"Started checkout session {record.id} ({result['session_id']}) for user {user.id}")
    return result["url"]

# --- Finalize ---

def _find_checkout_record(db: Session, user_id: int, session_id: str) -> Optional[CheckoutSession]:
    return db.query(CheckoutSession).filter(
        CheckoutSession.user_id == user_id,
        CheckoutSession.stripe_session_id == session_id,
    ).first()

def _verify_with_stripe(session_id: str) -> Dict[str, Any]:
    result = stripe_client.retrieve_checkout_session(session_id)
    if result.get("success"):
        return result
    logger.error(f"Failed to retrieve Stripe checkout session {session_id}: {result.get('error')}")
    if not result.get("configured", True):
        raise DependencyUnavailable(
            "Checkout verification is unavailable right now. Please contact support to confirm your subscription.",
            status_code=500,
        )
    raise DependencyUnavailable(
        "We could not verify your checkout with Stripe. "
        "Please reach out to support so we can confirm your subscription.",
        status_code=502,
    )

def _already_completed(record: CheckoutSession) -> FinalizeResult:
    return FinalizeResult(
        status="completed",
        message="Your subscription details are already confirmed. We will be in touch shortly!",
        stripe_status=record.stripe_status,
        stripe_payment_status=record.stripe_payment_status,
        already_completed=True,
        subscription_synced=True,
    )

def finalize_checkout(db: Session, user: User, session_id: Any, outcome: Any) -> FinalizeResult:
    if outcome not in FINALIZE_OUTCOMES:
        raise ValidationError("Provide a valid checkout outcome.")

    session_id = clean_string(session_id)
    if not session_id:
        if outcome == "success":
            raise ValidationError(
                "Missing Stripe session identifier. Please contact support to confirm your checkout."
            )
        return FinalizeResult(status="cancelled", message="Checkout was cancelled before a session could be created.")

    record = _find_checkout_record(db, user.id, session_id)
    if outcome == "success" and record is not None and record.status == CheckoutStatus.COMPLETED:
        return _already_completed(record)

    stripe_info = None
    if outcome == "success":
        stripe_info = _verify_with_stripe(session_id)
        metadata_user = str(stripe_info["metadata"].get("userId") or "")
        if metadata_user and metadata_user != str(user.id):
            logger.warning(f"User {user.id} tried to finalize Stripe session {session_id} owned by {metadata_user}")
            raise NotFoundError("We could not locate the checkout session you attempted to finalize.")

    if record is None and stripe_info is not None:
        metadata_checkout_id = str(stripe_info["metadata"].get("checkoutSessionId") or "")
        if metadata_checkout_id.isdigit():
            record = db.query(CheckoutSession).filter(
                CheckoutSession.id == int(metadata_checkout_id),
                CheckoutSession.user_id == user.id,
            ).first()
            if record is not None and not record.stripe_session_id:
                record.stripe_session_id = session_id
                db.commit()

    if record is None:
        raise NotFoundError("We could not locate the checkout session you attempted to finalize.")

    if outcome == "cancelled":
        if can_transition_checkout(record.status, CheckoutStatus.CANCELLED):
            record.status = CheckoutStatus.CANCELLED
            record.completed_at = record.completed_at or utcnow()
            db.commit()
            logger.info(f"Checkout session {record.id} cancelled by user {user.id}")
        return FinalizeResult(
            status="cancelled",
            message="Checkout was cancelled. Your selections are still saved so you can try again anytime.",
        )

    if record.status == CheckoutStatus.COMPLETED:
        return _already_completed(record)

    if not stripe_client.is_session_paid(stripe_info):
        logger.warning(
            f"Stripe session {session_id} not paid yet "
            f"(status={stripe_info['status']}, payment_status={stripe_info['payment_status']})"
        )
        raise ValidationError("Stripe has not confirmed payment for this checkout yet. Please try again shortly.")

    record.status = CheckoutStatus.COMPLETED
    record.completed_at = record.completed_at or utcnow()
    record.stripe_status = stripe_info["status"]
    record.stripe_payment_status = stripe_info["payment_status"]
    record.stripe_customer_id = stripe_info["customer_id"]
    record.stripe_subscription_id = stripe_info["subscription_id"]
    db.commit()
    logger.info(f"Checkout session {record.id} completed (Stripe subscription {record.stripe_subscription_id})")

    result = FinalizeResult(
        status="completed",
        message="Thanks! Your subscription is confirmed. We will follow up with scheduling details soon.",
        stripe_status=record.stripe_status,
        stripe_payment_status=record.stripe_payment_status,
    )

    # Payment is already committed at Stripe; a failed local write is retried
    # by scripts/reconcile_checkouts.py instead of failing the response.
    try:
        subscription = upsert_subscription_from_checkout(db, record, stripe_info["metadata"])
        result.subscription_id = subscription.id
        result.subscription_synced = True
    except Exception as e:
        db.rollback()
        logger.exception(f"Failed to sync subscription data after checkout {record.id} completed")
        result.subscription_error = str(e)

    return result

def upsert_subscription_from_checkout(
    db: Session, record: CheckoutSession, metadata: Optional[Dict[str, Any]] = None
) -> Subscription:
    """
    Create or update the Subscription for a completed checkout. The Stripe
    subscription id is the upsert key; the unique constraint on it turns a
    concurrent duplicate insert into an update of the winning row. Checkouts
    without a Stripe subscription id are matched on checkout_session_id.
    """
    metadata = metadata or {}
    access_notes = (record.access_notes or "").strip() or clean_string(metadata.get("accessNotes"), 1000) or None
    service_day = (
        normalize_service_day(record.preferred_service_day)
        or normalize_service_day(metadata.get("preferredServiceDay"))
    )
    fields = {
        "user_id": record.user_id,
        "checkout_session_id": record.id,
        "plan_id": record.plan_id,
        "plan_name": record.plan_name,
        "address_id": record.address_id,
        "address_label": record.address_label,
        "address_street": record.address_street,
        "address_city": record.address_city,
        "address_state": record.address_state,
        "address_postal_code": record.address_postal_code,
        "preferred_service_day": service_day,
        "services": list(record.services or []),
        "monthly_total": record.monthly_total,
        "access_notes": access_notes,
        "status": SubscriptionStatus.ACTIVE,
        "stripe_customer_id": record.stripe_customer_id,
        "stripe_subscription_id": record.stripe_subscription_id,
        "stripe_status": record.stripe_status,
        "stripe_payment_status": record.stripe_payment_status,
    }
    stripe_subscription_id = fields["stripe_subscription_id"]

    if stripe_subscription_id:
        existing = _find_subscription_by_stripe_id(db, stripe_subscription_id)
    else:
        existing = db.query(Subscription).filter(Subscription.checkout_session_id == record.id).first()
    if existing is not None:
        return _update_subscription(db, existing, fields)

    subscription = Subscription(**fields)
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find_subscription_by_stripe_id(db, stripe_subscription_id) if stripe_subscription_id else None
        if existing is None:
            raise
        logger.info(f"Concurrent insert for Stripe subscription {stripe_subscription_id}; updating row {existing.id}")
        return _update_subscription(db, existing, fields)

    db.refresh(subscription)
    logger.info(f"Created subscription {subscription.id} for user {record.user_id}")
    return subscription

def _find_subscription_by_stripe_id(db: Session, stripe_subscription_id: str) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.stripe_subscription_id == stripe_subscription_id).first()

def _update_subscription(db: Session, subscription: Subscription, fields: Dict[str, Any]) -> Subscription:
    for key, value in fields.items():
        setattr(subscription, key, value)
    db.commit()
    db.refresh(subscription)
    logger.info(f"Updated subscription {subscription.id} from checkout")
    return subscription
