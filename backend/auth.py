# auth.py - Session handling for the MapRoulette API
# Features:
# - Signed JWT access tokens issued in exchange for an OSM OAuth request token
# - API key authentication ("apiKey: <user id>|<key>" header)
# - User-aware requests that fall back to the guest user
# - Super user gate for privileged endpoints

import os
import uuid
import hashlib
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple

from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from logging_system import get_current_context, log_security
from schemas import User

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logging.getLogger(__name__).warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
API_KEY_PREFIX = "mr_"

security = HTTPBearer(auto_error=False)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class TokenRequest(BaseModel):
    token: str
    secret: str
    user_id: Optional[int] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Token and API key helpers"""

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def token_for_user(user: User) -> str:
        return AuthService.create_access_token({
            "sub": str(user.id),
            "osm_id": user.osm_profile.id,
            "name": user.osm_profile.display_name,
        })

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def hash_api_key(raw_key: str) -> str:
        return hashlib.sha256(raw_key.encode()).hexdigest()

    @staticmethod
    def generate_api_key() -> Tuple[str, str, str]:
        """Generate an API key. Returns (raw_key, key_hash, key_prefix)"""
        raw_key = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
        return raw_key, AuthService.hash_api_key(raw_key), raw_key[:12]

    @staticmethod
    def parse_api_key(header_value: str) -> Tuple[int, str]:
        """Split an "<user id>|<key>" header into its parts"""
        user_id, sep, raw_key = header_value.partition("|")
        if not sep or not raw_key:
            raise HTTPException(status_code=401, detail="Malformed API key")
        try:
            return int(user_id), raw_key
        except ValueError:
            raise HTTPException(status_code=401, detail="Malformed API key")


def _bind_user_to_context(user: User) -> None:
    context = get_current_context()
    if context is not None:
        context.user_id = str(user.id)


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_optional_user(
    api_key: Optional[str] = Header(default=None, alias="apiKey"),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[User]:
    """Resolve the caller from an API key or bearer token; None when anonymous"""
    from user_dal import user_dal

    if api_key:
        user_id, raw_key = AuthService.parse_api_key(api_key)
        user = await user_dal.retrieve_by_api_key(raw_key, user_id, db)
        if user is None:
            log_security("invalid_api_key", metadata={"user_id": user_id})
            raise HTTPException(status_code=401, detail="Invalid API key")
        _bind_user_to_context(user)
        return user

    if credentials is None:
        return None

    payload = AuthService.verify_token(credentials.credentials)
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await user_dal.retrieve_by_id(user_id, db)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    _bind_user_to_context(user)
    return user


async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_user_or_guest(user: Optional[User] = Depends(get_optional_user)) -> User:
    """User-aware request: anonymous callers act as the guest user"""
    return User.user_or_guest(user)
