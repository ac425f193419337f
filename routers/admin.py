from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, selectinload
from typing import List, Optional, Any
from db.init import get_db
from models.user import User, Address
from models.subscription import Subscription
from utils.admin import is_admin_user
from utils.deps import require_admin
from utils.errors import NotFoundError, ValidationError
from utils.normalize import clean_string
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["admin"])

class AddressItem(BaseModel):
    id: int
    label: Optional[str] = None
    street: str
    city: str
    state: str
    postalCode: str

class CustomerListItem(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    isAdmin: bool
    subscriptionCount: int
    addresses: List[AddressItem]

class AdminAddressRequest(BaseModel):
    userId: Optional[Any] = None
    label: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None

@router.post("/addresses")
def add_customer_address(
    request: AdminAddressRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    user_id = clean_string(str(request.userId)) if request.userId is not None else ""
    street = clean_string(request.street)
    city = clean_string(request.city)
    state = clean_string(request.state).upper()
    postal_code = clean_string(request.postalCode)
    if not user_id or not street or not city or not state or not postal_code:
        raise ValidationError("Provide user id and a complete address.")

    customer = db.query(User).filter(User.id == int(user_id)).first() if user_id.isdigit() else None
    if not customer:
        raise NotFoundError("Customer not found.")

    address = Address(
        user_id=customer.id,
        label=clean_string(request.label) or None,
        street=street,
        city=city,
        state=state,
        postal_code=postal_code,
    )
    db.add(address)
    db.commit()
    db.refresh(address)
    logger.info(f"Admin {admin.email} added address {address.id} for user {customer.id}")
    return {"address": address.to_dict()}

@router.get("/customers", response_model=List[CustomerListItem])
def list_customers(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    customers = db.query(User).options(selectinload(User.addresses)).order_by(User.id).all()

    # Subscription counts in one query instead of one per customer
    from sqlalchemy import func
    counts = dict(
        db.query(Subscription.user_id, func.count(Subscription.id)).group_by(Subscription.user_id).all()
    )

    return [
        CustomerListItem(
            id=c.id,
            name=c.full_name,
            email=c.email,
            phone=c.phone_number or "",
            isAdmin=is_admin_user(c.email),
            subscriptionCount=counts.get(c.id, 0),
            addresses=[AddressItem(**a.to_dict()) for a in c.addresses],
        )
        for c in customers
    ]

@router.get("/subscriptions")
def list_subscriptions(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    rows = (
        db.query(Subscription, User)
        .join(User, User.id == Subscription.user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .all()
    )
    subscriptions = []
    for subscription, owner in rows:
        data = subscription.to_dict()
        data["customer"] = {"id": owner.id, "name": owner.full_name, "email": owner.email}
        subscriptions.append(data)
    return {"subscriptions": subscriptions}
