import logging
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import Cookie, Depends, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models import Owner

logger = logging.getLogger(__name__)

OWNER_COOKIE = "token"
SUPER_ADMIN_COOKIE = "superToken"
OWNER_TOKEN_TTL = timedelta(days=7)
SUPER_ADMIN_TOKEN_TTL = timedelta(hours=24)
INVITATION_TTL = timedelta(days=7)
MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def generate_invitation_code() -> str:
    return secrets.token_hex(16)


def invitation_expired(owner: Owner, now: datetime | None = None) -> bool:
    if owner.invited_at is None:
        return False
    return (now or datetime.now()) - owner.invited_at > INVITATION_TTL


def create_token(claims: dict, ttl: timedelta) -> str:
    payload = {**claims, "exp": datetime.now(timezone.utc) + ttl}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str | None) -> dict | None:
    if not token:
        return None
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def set_auth_cookie(response, name: str, token: str, ttl: timedelta) -> None:
    response.set_cookie(
        name,
        token,
        max_age=int(ttl.total_seconds()),
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )


def login_owner(response, owner: Owner) -> None:
    token = create_token({"sub": str(owner.id), "email": owner.email}, OWNER_TOKEN_TTL)
    set_auth_cookie(response, OWNER_COOKIE, token, OWNER_TOKEN_TTL)


def current_owner(
    token: str | None = Cookie(default=None),
    db: Session = Depends(get_db),
) -> Owner:
    claims = decode_token(token)
    if not claims or not str(claims.get("sub", "")).isdigit():
        raise HTTPException(401, "Not authenticated")
    owner = db.get(Owner, int(claims["sub"]))
    if not owner or owner.status != "active":
        raise HTTPException(401, "Not authenticated")
    return owner


def require_super_admin(
    super_token: str | None = Cookie(default=None, alias=SUPER_ADMIN_COOKIE),
) -> dict:
    claims = decode_token(super_token)
    if not claims or claims.get("role") != "super-admin":
        raise HTTPException(401, "Not authenticated")
    return claims


def check_super_admin(email: str, password: str) -> bool:
    if not settings.SUPER_ADMIN_EMAIL or not settings.SUPER_ADMIN_PASSWORD:
        logger.warning("Super admin login attempted but credentials are not configured")
        return False
    return (
        secrets.compare_digest(email.lower().encode(), settings.SUPER_ADMIN_EMAIL.lower().encode())
        and secrets.compare_digest(password.encode(), settings.SUPER_ADMIN_PASSWORD.encode())
    )
