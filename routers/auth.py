from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional
from db.init import get_db
from models.user import User, Address
from utils.admin import is_admin_user
from utils.deps import get_db_user
from utils.errors import AuthenticationError, ValidationError
from utils.normalize import clean_string, is_postal_code, is_us_state
from utils.notifications import dispatch_quietly, send_signup_welcome_email
from utils.security import hash_password, verify_password, create_access_token
from pydantic import BaseModel, EmailStr
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

class RegisterRequest(BaseModel):
    firstName: str
    lastName: str
    email: EmailStr
    password: str
    phone: Optional[str] = None
    referralSource: Optional[str] = None
    street: str
    city: str
    state: str
    postalCode: str

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "phone": user.phone_number,
        "isAdmin": is_admin_user(user.email),
    }

@router.post("/register")
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    first_name = clean_string(request.firstName)
    last_name = clean_string(request.lastName)
    email = request.email.lower()
    if not first_name or not last_name or not request.password:
        raise ValidationError("Please complete all required fields.")

    street = clean_string(request.street)
    city = clean_string(request.city)
    state = clean_string(request.state).upper()
    postal_code = "".join(clean_string(request.postalCode).split())
    if not street or not city or not state or not postal_code:
        raise ValidationError("Please provide a complete service address.")

    if len(request.password) < 8:
        raise ValidationError("Passwords need to be at least 8 characters long.")
    if not is_us_state(state):
        raise ValidationError("Please choose a valid U.S. state.")
    if not is_postal_code(postal_code):
        raise ValidationError("Please provide a valid 5 or 9 digit ZIP code.")

    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        raise ValidationError("An account with that email already exists. Try signing in instead.")

    new_user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone_number=clean_string(request.phone) or None,
        password_hash=hash_password(request.password),
        referral_source=clean_string(request.referralSource) or None,
    )
    new_user.addresses.append(
        Address(label="Home", street=street, city=city, state=state, postal_code=postal_code)
    )

    db.add(new_user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("That email is already in use. Please sign in or use a different email.")
    db.refresh(new_user)
    logger.info(f"Registered user {new_user.id}")

    dispatch_quietly(
        "signup welcome email",
        send_signup_welcome_email,
        new_user.email,
        first_name=new_user.first_name,
        last_name=new_user.last_name,
    )

    return {"message": "User created successfully", "user": serialize_user(new_user)}

@router.post("/login")
def login(request: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == request.email.lower()).first()
    if not user or not verify_password(request.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    access_token = create_access_token(data={"sub": user.email, "id": user.id})
    return {"access_token": access_token, "token_type": "bearer", "user": serialize_user(user)}

@router.get("/me")
def me(user: User = Depends(get_db_user)):
    return {"user": serialize_user(user)}
