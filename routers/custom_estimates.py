from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session
from typing import Optional, List, Any, Dict
from db.init import get_db
from models.user import User
from models.custom_estimate import CustomEstimate, EstimateStatus
from utils.admin import is_admin_user
from utils.deps import get_db_user, require_admin
from utils.errors import AuthorizationError, NotFoundError, ValidationError
from utils.estimate_logic import (
    apply_status,
    authorize_status_target,
    build_pricing,
    cancel_linked_subscription,
    finalize_estimate_checkout,
    has_pricing_changes,
    parse_status_target,
    push_pricing_to_stripe,
    record_paid_on_file,
    start_estimate_checkout,
)
from utils.normalize import clean_string
from utils.notifications import dispatch_quietly, send_custom_estimate_email
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

# --- Pydantic Models ---

class CreateEstimateRequest(BaseModel):
    userId: Optional[Any] = None
    addresses: Optional[List[Any]] = None
    lineItems: Optional[List[Any]] = None
    monthlyAdjustment: Optional[Any] = None
    notes: Optional[str] = None
    adminNotes: Optional[str] = None
    preferredServiceDay: Optional[str] = None
    status: Optional[str] = None

class EstimateCheckoutRequest(BaseModel):
    estimateIds: Optional[List[Any]] = None

class EstimateFinalizeRequest(BaseModel):
    sessionId: Optional[str] = None
    outcome: Optional[str] = None

# --- Helpers ---

def _load_visible_estimate(db: Session, estimate_id: int, user: User, is_admin: bool) -> CustomEstimate:
    """Non-owners get the same 404 as a missing estimate."""
    estimate = db.query(CustomEstimate).filter(CustomEstimate.id == estimate_id).first()
    if not estimate or (not is_admin and estimate.user_id != user.id):
        raise NotFoundError("Estimate not found.")
    return estimate

def _send_review_email(db: Session, estimate: CustomEstimate) -> bool:
    owner = db.query(User).filter(User.id == estimate.user_id).first()
    if not owner or not owner.email:
        return False
    return dispatch_quietly(
        f"custom estimate email for estimate {estimate.id}",
        send_custom_estimate_email,
        owner.email,
        estimate.to_dict(include_admin_notes=False),
        first_name=owner.first_name,
        last_name=owner.last_name,
    )

# --- Endpoints ---

@router.get("")
def list_estimates(userId: Optional[int] = None, user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    is_admin = is_admin_user(user.email)
    query = db.query(CustomEstimate)
    if is_admin:
        if userId is not None:
            query = query.filter(CustomEstimate.user_id == userId)
    else:
        query = query.filter(CustomEstimate.user_id == user.id, CustomEstimate.dismissed_at.is_(None))
    estimates = query.order_by(CustomEstimate.created_at.desc(), CustomEstimate.id.desc()).all()
    return {"estimates": [estimate.to_dict(include_admin_notes=is_admin) for estimate in estimates]}

@router.post("")
def create_estimate(request: CreateEstimateRequest, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user_id = clean_string(str(request.userId)) if request.userId is not None else ""
    if not user_id:
        raise ValidationError("Select a customer before saving.")
    customer = db.query(User).filter(User.id == int(user_id)).first() if user_id.isdigit() else None
    if not customer:
        raise ValidationError("Select a valid customer before saving.")

    fields = build_pricing(request.model_dump())
    status = EstimateStatus.SENT if clean_string(request.status).upper() == "SENT" else EstimateStatus.DRAFT

    estimate = CustomEstimate(
        user_id=customer.id,
        created_by_email=admin.email,
        status=status,
        **fields,
    )
    db.add(estimate)
    db.commit()
    db.refresh(estimate)
    logger.info(f"Admin {admin.email} created estimate {estimate.id} ({status.value}) for user {customer.id}")

    if status == EstimateStatus.SENT:
        _send_review_email(db, estimate)

    return {"estimate": estimate.to_dict()}

@router.post("/checkout")
def checkout_estimates(request: EstimateCheckoutRequest, user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    url = start_estimate_checkout(db, user, request.estimateIds)
    return {"url": url}

@router.post("/finalize")
def finalize_estimates(request: EstimateFinalizeRequest, user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    return finalize_estimate_checkout(db, user, request.sessionId, request.outcome)

@router.get("/{estimate_id}")
def get_estimate(estimate_id: int, user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    is_admin = is_admin_user(user.email)
    estimate = _load_visible_estimate(db, estimate_id, user, is_admin)
    return {"estimate": estimate.to_dict(include_admin_notes=is_admin)}

@router.patch("/{estimate_id}")
def update_estimate(
    estimate_id: int,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_db_user),
    db: Session = Depends(get_db)
):
    is_admin = is_admin_user(user.email)
    estimate = _load_visible_estimate(db, estimate_id, user, is_admin)
    previous_status = EstimateStatus(estimate.status)

    # Authorize every requested change before touching the row.
    target = parse_status_target(payload.get("status"))
    if target:
        authorize_status_target(target, is_admin)

    payment_status = clean_string(payload.get("paymentStatus")).upper()
    if payment_status and payment_status != "PAID_ON_FILE":
        raise ValidationError("Provide a valid payment status.")
    if payment_status and not is_admin:
        raise AuthorizationError("Only admins can record payment.")

    pricing_edit = has_pricing_changes(payload)
    if pricing_edit and not is_admin:
        raise AuthorizationError("Only admins can edit estimate pricing.")

    fields = build_pricing(payload, estimate) if pricing_edit else None
    if target:
        apply_status(estimate, target)
    if payment_status:
        record_paid_on_file(estimate)

    if fields is not None:
        if estimate.status == EstimateStatus.ACTIVE and estimate.stripe_subscription_id:
            try:
                push_pricing_to_stripe(estimate, fields)
            except Exception:
                db.rollback()
                raise
        for key, value in fields.items():
            setattr(estimate, key, value)

    db.commit()
    db.refresh(estimate)
    logger.info(f"Estimate {estimate.id} updated by {user.email} (status {EstimateStatus(estimate.status).value})")

    became_sent = estimate.status == EstimateStatus.SENT and previous_status != EstimateStatus.SENT
    if estimate.status == EstimateStatus.SENT and (became_sent or pricing_edit):
        _send_review_email(db, estimate)

    return {"estimate": estimate.to_dict(include_admin_notes=is_admin)}

@router.delete("/{estimate_id}")
def delete_estimate(estimate_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    estimate = db.query(CustomEstimate).filter(CustomEstimate.id == estimate_id).first()
    if not estimate:
        raise NotFoundError("Estimate not found.")

    # Never leave a live Stripe subscription without its estimate.
    if estimate.stripe_subscription_id:
        cancel_linked_subscription(estimate)

    snapshot = estimate.to_dict()
    db.delete(estimate)
    db.commit()
    logger.info(f"Admin {admin.email} deleted estimate {estimate_id}")
    return {"estimate": snapshot, "message": "Estimate deleted."}
