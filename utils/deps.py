from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from db.init import get_db
from models.user import User
from utils.admin import is_admin_user
from utils.errors import AuthenticationError, AuthorizationError
from utils.security import decode_token

security = HTTPBearer(auto_error=False)

def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    if credentials is None:
        raise AuthenticationError("You must be signed in.")
    payload = decode_token(credentials.credentials)
    if not payload or payload.get("sub") is None:
        raise AuthenticationError("You must be signed in.")
    return payload

def get_db_user(current_user: dict = Depends(get_current_user), db: Session = Depends(get_db)) -> User:
    user_id = current_user.get("id")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise AuthenticationError("Your account could not be found. Please sign in again.")
    return user

def require_admin(user: User = Depends(get_db_user)) -> User:
    if not is_admin_user(user.email):
        raise AuthorizationError("Only admins can access this resource.")
    return user
