# campus_helpdesk/backend/app/auth.py
"""
Identity for ticket commands.

Bearer tokens are HS256 JWTs whose `sub` is the user's external id. The
token is mapped to the internal user row; the role always comes from the
row, never from the token.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .clock import utcnow
from .config import JWT_ALGORITHM, JWT_EXPIRY_HOURS, JWT_SECRET_KEY
from .db import get_db
from .errors import InvalidTokenError
from .models.user import ROLES, User


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str


def create_access_token(external_id: str, expires_hours: int = JWT_EXPIRY_HOURS) -> str:
    """Mint a token for tooling and tests."""
    now = utcnow()
    payload = {
        "sub": str(external_id),
        "iat": now,
        "exp": now + timedelta(hours=expires_hours),
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise InvalidTokenError("Token has expired")
    except jwt.InvalidTokenError as exc:
        raise InvalidTokenError(f"Invalid token: {exc}")


def resolve_identity(db: Session, token: str) -> Identity:
    claims = decode_access_token(token)
    external_id = claims.get("sub")
    if not external_id:
        raise InvalidTokenError("Token has no subject")

    user = db.query(User).filter(User.external_id == external_id).first()
    if user is None or not user.is_active:
        raise InvalidTokenError("Unknown or inactive user")
    if user.role not in ROLES:
        raise InvalidTokenError(f"User has unsupported role {user.role!r}")

    return Identity(user_id=user.id, role=user.role)


def get_current_identity(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Identity:
    """FastAPI dependency: Authorization: Bearer <token> -> Identity."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
        )
    token = authorization.split(" ", 1)[1].strip()
    try:
        return resolve_identity(db, token)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
