from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional, List, Any
from db.init import get_db
from models.user import User
from utils.deps import get_db_user
from utils.checkout_logic import start_checkout, finalize_checkout
from pydantic import BaseModel

router = APIRouter()

# --- Pydantic Models ---
# Entries stay loosely typed: invalid services are dropped during normalization, not rejected.

class CheckoutRequest(BaseModel):
    services: Optional[List[Any]] = None
    address: Optional[Any] = None
    planId: Optional[str] = None
    planName: Optional[str] = None
    accessNotes: Optional[str] = None
    serviceDay: Optional[str] = None

class FinalizeRequest(BaseModel):
    sessionId: Optional[str] = None
    outcome: Optional[str] = None

# --- Endpoints ---

@router.post("")
def create_checkout(request: CheckoutRequest, user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    url = start_checkout(
        db,
        user,
        services=request.services,
        address=request.address,
        plan_id=request.planId,
        plan_name=request.planName,
        access_notes=request.accessNotes,
        service_day=request.serviceDay,
    )
    return {"url": url}

@router.post("/finalize")
def finalize(request: FinalizeRequest, user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    """Reconcile the outcome Stripe redirected back with. Safe to call repeatedly."""
    result = finalize_checkout(db, user, request.sessionId, request.outcome)
    return result.to_response()
