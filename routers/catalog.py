from fastapi import APIRouter, Cookie, Depends, Response
from sqlalchemy.orm import Session
from typing import Optional, List, Any
from db.init import get_db, seed_services
from models.catalog import Service, Quote
from utils.errors import ValidationError
from utils.normalize import clean_string, round_cents, to_number
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

QUOTE_COOKIE = "quoteId"
QUOTE_COOKIE_MAX_AGE = 60 * 60 * 24 * 30

class QuoteRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None
    notes: Optional[str] = None
    services: Optional[List[Any]] = None

def parse_selections(services: Any) -> dict:
    """Map of service id to quantity; a missing or non-positive quantity counts as 1."""
    selections = {}
    for entry in services or []:
        if not isinstance(entry, dict):
            continue
        service_id = clean_string(str(entry.get("serviceId") or ""))
        if not service_id.isdigit():
            continue
        quantity = to_number(entry.get("quantity"))
        selections[int(service_id)] = quantity if quantity is not None and quantity > 0 else 1
    return selections

@router.get("/services", tags=["Catalog"])
def list_services(db: Session = Depends(get_db)):
    services = seed_services(db)
    return {"services": [service.to_dict() for service in services]}

@router.get("/quotes", tags=["Catalog"])
def get_saved_quote(response: Response, quoteId: Optional[str] = Cookie(None), db: Session = Depends(get_db)):
    if not quoteId:
        return {"quote": None}

    quote = db.query(Quote).filter(Quote.id == int(quoteId)).first() if quoteId.isdigit() else None
    if not quote:
        response.delete_cookie(QUOTE_COOKIE, path="/")
        return {"quote": None}
    return {"quote": quote.to_dict()}

@router.post("/quotes", tags=["Catalog"])
def create_quote(request: QuoteRequest, response: Response, db: Session = Depends(get_db)):
    first_name = clean_string(request.firstName)
    last_name = clean_string(request.lastName)
    email = clean_string(request.email)
    if not first_name or not last_name or not email:
        raise ValidationError("First name, last name, and email are required.")

    selections = parse_selections(request.services)
    if not selections:
        raise ValidationError("Please select at least one service.")

    services = db.query(Service).filter(Service.id.in_(list(selections)), Service.active.is_(True)).all()
    if not services:
        raise ValidationError("Selected services could not be found.")

    priced = []
    for service in services:
        quantity = selections[service.id]
        line = service.to_dict()
        line["quantity"] = quantity
        line["lineTotal"] = round_cents(service.price * quantity)
        priced.append(line)

    quote = Quote(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=clean_string(request.phone) or None,
        street=clean_string(request.street) or None,
        city=clean_string(request.city) or None,
        state=clean_string(request.state) or None,
        postal_code=clean_string(request.postalCode) or None,
        notes=clean_string(request.notes, max_length=2000) or None,
        services=priced,
        estimated_total=round_cents(sum(line["lineTotal"] for line in priced)),
    )
    db.add(quote)
    db.commit()
    db.refresh(quote)
    logger.info(f"Saved quote {quote.id} with {len(priced)} services")

    response.set_cookie(
        QUOTE_COOKIE,
        str(quote.id),
        max_age=QUOTE_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
    )
    return {"quote": quote.to_dict()}
