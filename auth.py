"""Credential issuance and request guards.

The credential is a signed JWT carrying the user's email and role, stored in
an http-only cookie. Role checks never trust the role inside the token: they
re-read the user document, since the role may have changed after issuance.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Cookie, Depends, HTTPException, Response, status
from jose import JWTError, jwt
from pydantic import BaseModel
from pymongo.database import Database

from config import IS_PRODUCTION, JWT_ALGORITHM, JWT_EXPIRATION_DAYS, JWT_SECRET
from database import USERS, get_db

logger = logging.getLogger(__name__)

COOKIE_NAME = "token"


class Principal(BaseModel):
    email: str
    role: str = "user"


def create_access_token(email: str, role: str) -> str:
    """Create a signed token for the given identity."""
    expire = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRATION_DAYS)
    to_encode = {"email": email, "role": role, "exp": expire}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate a token, returning its claims or None."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


def set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=IS_PRODUCTION,
        samesite="none" if IS_PRODUCTION else "lax",
        max_age=JWT_EXPIRATION_DAYS * 24 * 60 * 60,
    )


def clear_token_cookie(response: Response) -> None:
    response.delete_cookie(
        COOKIE_NAME,
        httponly=True,
        secure=IS_PRODUCTION,
        samesite="none" if IS_PRODUCTION else "lax",
    )


def get_current_principal(token: Annotated[Optional[str], Cookie()] = None) -> Principal:
    """Get the authenticated principal from the credential cookie."""
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized access")

    payload = decode_access_token(token)
    if payload is None or not payload.get("email"):
        logger.warning("Rejected invalid credential")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized access")

    return Principal(email=payload["email"], role=payload.get("role", "user"))


def _require_role(db: Database, principal: Principal, role: str) -> dict:
    user = db[USERS].find_one({"email": principal.email})
    if not user or user.get("role") != role:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden access")
    return user


def verify_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[Database, Depends(get_db)],
) -> Principal:
    """Allow only principals whose stored role is admin."""
    _require_role(db, principal, "admin")
    return principal


def verify_chef(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[Database, Depends(get_db)],
) -> dict:
    """Allow only chefs; returns the chef's user document."""
    return _require_role(db, principal, "chef")
