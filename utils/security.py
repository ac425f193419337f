from passlib.context import CryptContext
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
import os

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256", "bcrypt"],
    default="pbkdf2_sha256",
    deprecated="auto",
)

def get_jwt_settings():
    return os.getenv("JWT_SECRET", "supersecretkey"), os.getenv("JWT_ALGORITHM", "HS256")

def hash_password(password: str) -> str:
    if password is None:
        password = ""
    return pwd_context.hash(str(password))

def verify_password(plain_password: str, hashed_password: str) -> bool:
    if plain_password is None or not hashed_password:
        return False
    return pwd_context.verify(str(plain_password), hashed_password)

def create_access_token(data: dict, expires_delta: timedelta = timedelta(hours=6)):
    secret_key, algorithm = get_jwt_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)

def decode_token(token: str):
    secret_key, algorithm = get_jwt_settings()
    try:
        return jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError:
        return None
