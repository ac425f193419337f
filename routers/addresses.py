from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from db.init import get_db
from models.user import User, Address
from utils.deps import get_db_user
from utils.errors import ValidationError
from utils.normalize import normalize_address
from pydantic import BaseModel

router = APIRouter()

class AddressRequest(BaseModel):
    label: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None

@router.get("")
def list_addresses(user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    addresses = db.query(Address).filter(Address.user_id == user.id).order_by(Address.id).all()
    return {"addresses": [address.to_dict() for address in addresses]}

@router.post("")
def create_address(request: AddressRequest, user: User = Depends(get_db_user), db: Session = Depends(get_db)):
    address = normalize_address(request.model_dump())
    if not address:
        raise ValidationError("Provide a complete address.")

    new_address = Address(
        user_id=user.id,
        label=address["label"],
        street=address["street"],
        city=address["city"],
        state=address["state"],
        postal_code=address["postalCode"],
    )
    db.add(new_address)
    db.commit()
    db.refresh(new_address)
    return {"address": new_address.to_dict()}
