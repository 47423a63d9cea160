"""Authentication for web API: JWT, password hashing, permission checks."""
from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlalchemy import select

import config
from core.models import StaffUser
from core.models.base import async_session_factory
from core.permissions import PERMISSIONS

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def _prepare_password(password: str) -> str:
    """Bcrypt has a 72-byte limit. Pre-hash longer passwords with SHA256."""
    encoded = password.encode("utf-8")
    if len(encoded) > 72:
        return hashlib.sha256(encoded).hexdigest()
    return password


def hash_password(password: str) -> str:
    return pwd_context.hash(_prepare_password(password))


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(_prepare_password(plain), hashed)


def create_access_token(user: StaffUser) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=config.JWT_EXPIRE_HOURS)
    payload = {"sub": user.username, "uid": user.id, "role": user.role, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


async def get_user_by_username(username: str) -> Optional[StaffUser]:
    async with async_session_factory() as session:
        result = await session.execute(select(StaffUser).where(StaffUser.username == username))
        return result.scalar_one_or_none()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    x_auth_token: Optional[str] = Header(None, alias="X-Auth-Token"),
) -> Optional[StaffUser]:
    """Return current staff user from JWT, or None if not authenticated. Accepts Authorization: Bearer or X-Auth-Token (fallback for proxies that strip Authorization)."""
    token = None
    if credentials and credentials.credentials:
        token = credentials.credentials
    elif x_auth_token:
        token = x_auth_token
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    username = payload.get("sub")
    if not username:
        return None
    return await get_user_by_username(username)


async def require_user(
    user: Optional[StaffUser] = Depends(get_current_user),
) -> StaffUser:
    """Require an authenticated, active staff user. 401 if not logged in, 403 if deactivated."""
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return user


def check_permission(user: StaffUser, permission: str) -> StaffUser:
    """Require a stored permission flag. Raises 403 if missing."""
    if not user.has_permission(permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Permission denied: {permission}")
    return user


def require_permission(permission: str):
    """Dependency factory: require logged-in staff holding ``permission``."""
    if permission not in PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission}")

    async def dependency(user: StaffUser = Depends(require_user)) -> StaffUser:
        return check_permission(user, permission)

    return dependency


require_attendance_user = require_permission("can_mark_attendance")
require_distribution_user = require_permission("can_distribute_food")
require_undo_user = require_permission("can_undo_actions")
require_user_manager = require_permission("can_manage_users")
require_settings_user = require_permission("can_manage_settings")
