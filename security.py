import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import ADMIN_EMAILS, JWT_SECRET
from database import db

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24
SIGN_IN_LINK_EXPIRE_MINUTES = 60

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login/password")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(EMAIL_RE.match(normalize_email(email)))


def is_admin_email(email: Optional[str]) -> bool:
    return normalize_email(email) in ADMIN_EMAILS


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def password_policy_error(password: str, confirm_password: Optional[str] = None) -> Optional[str]:
    """Return the first policy violation for a new password, or None."""
    if confirm_password is not None and password != confirm_password:
        return "Passwords do not match"
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number"
    return None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "jti": uuid4().hex})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=ALGORITHM)


def create_session_token(user: dict) -> str:
    role = "admin" if is_admin_email(user["email"]) else "member"
    return create_access_token({"sub": str(user["_id"]), "email": user["email"], "role": role})


def create_sign_in_link_token(email: str) -> str:
    return create_access_token(
        {"sub": normalize_email(email), "purpose": "sign_in_link"},
        timedelta(minutes=SIGN_IN_LINK_EXPIRE_MINUTES),
    )


def decode_token(token: str, purpose: Optional[str] = None) -> Optional[dict]:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != purpose:
        return None
    return payload


# Dependency: get current user
def get_session(token: str = Depends(oauth2_scheme)) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_token(token)
    if payload is None or payload.get("sub") is None:
        raise credentials_exception
    if db["revokedtokens"].find_one({"_id": payload.get("jti")}):
        raise credentials_exception
    return payload


def get_current_user(session: dict = Depends(get_session)) -> dict:
    user = db["users"].find_one({"_id": session["sub"]})
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user["id"] = str(user.pop("_id"))
    user["role"] = "admin" if is_admin_email(user.get("email")) else "member"
    return user


# Admin guard: every admin-only route goes through this
def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Unauthorized: Admin access required")
    return user
