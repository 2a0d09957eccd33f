"""
JWT Token Authentication

Tokens are issued by the identity provider in front of the portal; this
module only verifies them. The ``sub`` claim carries the profile id.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import get_config
from portal.db import get_db
from portal.db.models import Profile

ACCESS_TOKEN_EXPIRE_MINUTES = 24 * 60

security = HTTPBearer()


class TokenData(BaseModel):
    user_id: str
    email: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token (used by tests and local tooling)"""
    config = get_config().auth
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.jwt_secret, algorithm=config.algorithm)


def verify_token(token: str) -> TokenData:
    """Verify and decode a JWT token"""
    config = get_config().auth
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.algorithm])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )
    return TokenData(user_id=user_id, email=payload.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Get the current authenticated user from JWT token"""
    token_data = verify_token(credentials.credentials)
    user = await db.get(Profile, token_data.user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    return user


async def get_current_admin(current_user: Profile = Depends(get_current_user)) -> Profile:
    """Require admin role"""
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


async def require_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    """Scheduled jobs authenticate with the shared ``X-Cron-Secret`` header"""
    expected = get_config().auth.cron_secret
    if not expected or x_cron_secret != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
