# shared/auth_middleware.py
import os
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from shared.database import Database, get_db

# JWT Configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"

security = HTTPBearer()


class TokenData(BaseModel):
    user_id: str
    email: Optional[str] = None


def verify_token(token: str) -> TokenData:
    """Verify and decode JWT token"""
    try:
        # Tokens from the auth provider carry an audience we don't pin
        payload = jwt.decode(
            token,
            JWT_SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            options={"verify_aud": False},
        )

        user_id = payload.get("sub") or payload.get("user_id")
        if user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
            )

        return TokenData(user_id=str(user_id), email=payload.get("email"))

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TokenData:
    """FastAPI dependency to get current user from JWT token"""
    return verify_token(credentials.credentials)


async def has_role(db: Database, user_id: str, role: str) -> bool:
    row = await db.fetch_one(
        "SELECT 1 AS found FROM user_roles WHERE user_id = $1 AND role = $2", user_id, role
    )
    return row is not None


async def require_admin(
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
) -> TokenData:
    """FastAPI dependency that requires the admin role"""
    if not await has_role(db, current_user.user_id, "admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required"
        )
    return current_user


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False)),
) -> Optional[TokenData]:
    """FastAPI dependency to get current user, but don't require authentication"""
    if credentials is None:
        return None

    try:
        return verify_token(credentials.credentials)
    except HTTPException:
        return None
