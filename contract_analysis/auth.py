"""
Authentication Module with JWT Support
======================================

Resolves the calling user and their organization (tenant).

Authentication Flow:
1. Load user id from `Authorization: Bearer <jwt>` or the X-User-Id header
2. Load the User row; its organization is the caller's tenant
3. 401 when neither is present or the user is unknown
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .db.models import User, UserRole
from .db.session import get_db

logger = logging.getLogger(__name__)

# JWT configuration
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))


# =============================================================================
# JWT TOKEN HANDLING
# =============================================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid JWT token: {e}")
        return None
    if payload.get("type") != "access":
        return None
    return payload


def user_id_from_headers(authorization: Optional[str], x_user_id: Optional[str]) -> Optional[str]:
    """Bearer token subject if valid, else the X-User-Id header"""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        payload = decode_token(token)
        if payload and payload.get("sub"):
            return payload["sub"]
    return x_user_id or None


# =============================================================================
# AUTH CONTEXT
# =============================================================================

@dataclass
class AuthContext:
    """Authorization context for a request"""
    user_id: str
    organization_id: str
    email: str
    name: Optional[str]
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "AuthContext":
        return cls(
            user_id=user.id,
            organization_id=user.organization_id,
            email=user.email,
            name=user.name,
            role=user.role,
        )


def load_auth_context(db: Session, user_id: str) -> Optional[AuthContext]:
    """
    Build auth context for a user.

    Returns:
        AuthContext if the user exists, None otherwise
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"Auth failed: user {user_id} not found")
        return None
    return AuthContext.from_user(user)


async def get_auth_context(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: Session = Depends(get_db)
) -> AuthContext:
    """
    FastAPI dependency: the authenticated caller.

    Accepts:
    - `Authorization: Bearer <jwt>` (preferred when present)
    - `X-User-Id` header
    """
    user_id = user_id_from_headers(authorization, x_user_id)
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required.")

    auth = load_auth_context(db, user_id)
    if not auth:
        raise HTTPException(status_code=401, detail="Authentication required.")
    return auth
