"""
Custom estimate lifecycle: pricing normalization, status changes, billing sync
with Stripe, and the estimate-only checkout that keeps its state in Stripe
metadata instead of a local pending record.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models.custom_estimate import (
    CHECKOUT_ELIGIBLE_STATUSES,
    CUSTOMER_STATUS_TARGETS,
    CustomEstimate,
    EstimatePaymentStatus,
    EstimateStatus,
    can_transition_estimate,
)
from models.user import User
from utils import stripe_client
from utils.email import get_app_base_url
from utils.errors import AuthorizationError, DependencyUnavailable, ValidationError
from utils.normalize import (
    clean_string,
    estimate_totals,
    normalize_addresses,
    normalize_line_items,
    normalize_service_day,
    round_cents,
    to_number,
)

logger = logging.getLogger(__name__)

# Presence of any of these keys in a PATCH body means a pricing edit.
PRICING_KEYS = ("addresses", "lineItems", "monthlyAdjustment", "preferredServiceDay", "notes", "adminNotes")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def normalize_adjustment(value: Any) -> float:
    number = to_number(value)
    return round_cents(number) if number is not None else 0.0

def build_pricing(payload: Dict[str, Any], estimate: Optional[CustomEstimate] = None) -> Dict[str, Any]:
    """
    Validate pricing fields and return column values with subtotal/total
    recomputed. On edit, keys missing from the payload keep the stored value.
    """
    def provided(key):
        return estimate is None or key in payload

    if provided("addresses"):
        addresses = normalize_addresses(payload.get("addresses"))
        if not addresses:
            raise ValidationError("Select at least one address.")
    else:
        addresses = list(estimate.addresses or [])

    if provided("lineItems"):
        line_items = normalize_line_items(payload.get("lineItems"))
        if not line_items:
            raise ValidationError("Add at least one line item.")
    else:
        line_items = list(estimate.line_items or [])

    if provided("monthlyAdjustment"):
        monthly_adjustment = normalize_adjustment(payload.get("monthlyAdjustment"))
    else:
        monthly_adjustment = estimate.monthly_adjustment or 0.0

    subtotal, total = estimate_totals(line_items, monthly_adjustment)
    fields = {
        "addresses": addresses,
        "line_items": line_items,
        "monthly_adjustment": monthly_adjustment,
        "subtotal": subtotal,
        "total": total,
    }
    if provided("preferredServiceDay"):
        fields["preferred_service_day"] = normalize_service_day(payload.get("preferredServiceDay"))
    if provided("notes"):
        fields["notes"] = clean_string(payload.get("notes"), max_length=2000) or None
    if provided("adminNotes"):
        fields["admin_notes"] = clean_string(payload.get("adminNotes"), max_length=2000) or None
    return fields

def has_pricing_changes(payload: Dict[str, Any]) -> bool:
    return any(key in payload for key in PRICING_KEYS)

def parse_status_target(value: Any) -> Optional[str]:
    if value is None:
        return None
    target = clean_string(value).upper()
    if target != "DELETE" and target not in EstimateStatus.__members__:
        raise ValidationError("Provide a valid estimate status.")
    return target

def authorize_status_target(target: str, is_admin: bool) -> None:
    if not is_admin and target not in CUSTOMER_STATUS_TARGETS:
        raise AuthorizationError("Only admins can set that status.")

def apply_status(estimate: CustomEstimate, target: str) -> None:
    """DELETE from a customer dismisses the estimate: it is cancelled and hidden from their list."""
    next_status = EstimateStatus.CANCELLED if target == "DELETE" else EstimateStatus(target)
    if not can_transition_estimate(estimate.status, next_status):
        current = EstimateStatus(estimate.status).value
        raise ValidationError(f"An estimate cannot move from {current} to {next_status.value}.")

    estimate.status = next_status
    if next_status == EstimateStatus.ACCEPTED and estimate.accepted_at is None:
        estimate.accepted_at = utcnow()
    if target == "DELETE" and estimate.dismissed_at is None:
        estimate.dismissed_at = utcnow()

def record_paid_on_file(estimate: CustomEstimate) -> None:
    estimate.payment_status = EstimatePaymentStatus.PAID_ON_FILE
    estimate.paid_at = estimate.paid_at or utcnow()

# --- Stripe billing sync ---

def billing_items(line_items: List[Dict[str, Any]], monthly_adjustment: float, estimate_id: int,
                  label: str = "") -> List[Dict[str, Any]]:
    """One Stripe item per line item plus an adjustment line; non-positive entries are dropped."""
    suffix = f" ({label})" if label else ""
    items = [
        {
            "id": item.get("id") or str(estimate_id),
            "name": f"{item.get('description') or 'Custom service'}{suffix}",
            "quantity": to_number(item.get("quantity")) or 1,
            "monthlyRate": to_number(item.get("monthlyRate")) or 0,
            "frequency": item.get("frequency") or "Monthly",
            "notes": item.get("notes"),
        }
        for item in line_items
    ]
    if monthly_adjustment:
        items.append({
            "id": f"adjustment-{estimate_id}",
            "name": f"Custom adjustment{suffix}",
            "quantity": 1,
            "monthlyRate": monthly_adjustment,
            "frequency": "Monthly",
            "notes": None,
        })
    return [item for item in items if item["quantity"] > 0 and item["monthlyRate"] > 0]

def estimate_label(estimate: CustomEstimate) -> str:
    return ", ".join(
        address.get("label") or address.get("street")
        for address in (estimate.addresses or [])
        if address.get("label") or address.get("street")
    )

def push_pricing_to_stripe(estimate: CustomEstimate, fields: Dict[str, Any]) -> None:
    """Billing must match displayed pricing, so a failure here aborts the edit."""
    items = billing_items(fields["line_items"], fields["monthly_adjustment"], estimate.id)
    if not items:
        raise ValidationError("The estimate has no billable line items.")

    result = stripe_client.update_subscription_items(estimate.stripe_subscription_id, items)
    if not result.get("success"):
        logger.error(
            f"Failed to update Stripe subscription {estimate.stripe_subscription_id} "
            f"for estimate {estimate.id}: {result.get('error')}"
        )
        raise DependencyUnavailable(
            "We could not update billing for this estimate. Please try again or verify your Stripe settings.",
            status_code=500,
        )
    logger.info(f"Replaced Stripe items on {estimate.stripe_subscription_id} for estimate {estimate.id}")

def cancel_linked_subscription(estimate: CustomEstimate) -> None:
    result = stripe_client.cancel_subscription(estimate.stripe_subscription_id)
    if not result.get("success"):
        logger.error(
            f"Failed to cancel Stripe subscription {estimate.stripe_subscription_id} "
            f"for estimate {estimate.id}: {result.get('error')}"
        )
        raise DependencyUnavailable(
            "We could not cancel the billing subscription for this estimate, so it was not deleted.",
            status_code=502,
        )

# --- Estimate checkout ---

def normalize_estimate_ids(value: Any) -> List[int]:
    """Accepts a list (JSON body) or a comma-joined string (Stripe metadata)."""
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    ids = []
    for item in value:
        text = str(item).strip() if isinstance(item, (int, str)) and not isinstance(item, bool) else ""
        if text.isdigit() and int(text) not in ids:
            ids.append(int(text))
    return ids

def start_estimate_checkout(db: Session, user: User, estimate_ids: Any) -> str:
    ids = normalize_estimate_ids(estimate_ids)
    if not ids:
        raise ValidationError("Select at least one plan to checkout.")

    estimates = db.query(CustomEstimate).filter(
        CustomEstimate.id.in_(ids),
        CustomEstimate.user_id == user.id,
        CustomEstimate.payment_status == EstimatePaymentStatus.PENDING,
        CustomEstimate.status.in_(CHECKOUT_ELIGIBLE_STATUSES),
    ).order_by(CustomEstimate.id).all()
    if not estimates:
        raise ValidationError("No eligible custom plans were found for checkout.")

    items = []
    for estimate in estimates:
        items.extend(billing_items(
            estimate.line_items or [], estimate.monthly_adjustment or 0, estimate.id, estimate_label(estimate)
        ))
    if not items:
        raise ValidationError("Selected plans are missing billable line items.")

    base_url = get_app_base_url()
    result = stripe_client.create_checkout_session(
        items=items,
        customer_email=user.email,
        success_url=f"{base_url}/dash/custom-plans?checkout=success&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/dash/custom-plans?checkout=cancelled&session_id={{CHECKOUT_SESSION_ID}}",
        metadata={
            "estimateIds": ",".join(str(estimate.id) for estimate in estimates),
            "userId": user.id,
        },
    )
    if not result.get("success"):
        logger.error(f"Failed to create custom estimate checkout for user {user.id}: {result.get('error')}")
        if not result.get("configured", True):
            raise DependencyUnavailable("Checkout is unavailable. Please try again later.", status_code=500)
        raise DependencyUnavailable("Unable to start checkout. Please try again.", status_code=500)

    logger.info(f"Started estimate checkout {result['session_id']} for estimates {[e.id for e in estimates]}")
    return result["url"]

def finalize_estimate_checkout(db: Session, user: User, session_id: Any, outcome: Any) -> Dict[str, Any]:
    if outcome != "success":
        return {"status": "cancelled", "message": "Checkout was cancelled. Your plans are still available."}

    session_id = clean_string(session_id)
    if not session_id:
        raise ValidationError("Stripe session id is required.")

    result = stripe_client.retrieve_checkout_session(session_id)
    if not result.get("success"):
        logger.error(f"Failed to finalize custom estimate checkout {session_id}: {result.get('error')}")
        raise DependencyUnavailable(
            "We could not finalize your checkout. Please contact support.", status_code=500
        )
    if not stripe_client.is_session_paid(result):
        logger.warning(
            f"Estimate checkout {session_id} not paid yet "
            f"(status={result.get('status')}, payment_status={result.get('payment_status')})"
        )
        raise ValidationError("Stripe has not confirmed payment for this checkout yet. Please try again shortly.")

    estimate_ids = normalize_estimate_ids(result["metadata"].get("estimateIds"))
    if not estimate_ids:
        raise ValidationError("No estimate metadata found.")

    estimates = db.query(CustomEstimate).filter(
        CustomEstimate.id.in_(estimate_ids),
        CustomEstimate.user_id == user.id,
    ).all()
    now = utcnow()
    for estimate in estimates:
        estimate.payment_status = EstimatePaymentStatus.PAID
        estimate.paid_at = estimate.paid_at or now
        estimate.status = EstimateStatus.ACTIVE
        estimate.stripe_subscription_id = result["subscription_id"]
    db.commit()
    activated = sorted(estimate.id for estimate in estimates)
    logger.info(f"Activated estimates {activated} via Stripe session {session_id}")

    return {
        "status": "completed",
        "message": "Payment received. Your custom plan is now active.",
        "estimateIds": [str(estimate_id) for estimate_id in activated],
    }
