"""Auth API routes: login, current user, staff management, mail check."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

import config
from core.models import StaffUser
from core.models.base import async_session_factory
from core.services import mailer
from web.auth import (
    create_access_token,
    get_user_by_username,
    hash_password,
    require_user,
    require_user_manager,
    verify_password,
)

logger = logging.getLogger("checkpoint.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

STAFF_ROLES = ("gate", "food")  # roles that can be created through the API


class LoginRequest(BaseModel):
    username: str
    password: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: str
    is_active: bool
    permissions: dict[str, bool]
    created_at: Optional[datetime] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class CreateUserRequest(BaseModel):
    username: str
    password: str
    role: str = "food"  # gate, food


class UpdateUserRequest(BaseModel):
    password: Optional[str] = None
    role: Optional[str] = None


class UserStatusRequest(BaseModel):
    is_active: bool


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest):
    """Authenticate and return JWT."""
    user = await get_user_by_username(body.username)
    if not user:
        # Bootstrap: if INITIAL_ADMIN_PASSWORD is set and matches, create admin
        if (
            config.INITIAL_ADMIN_PASSWORD
            and body.username == config.INITIAL_ADMIN_USERNAME
            and body.password == config.INITIAL_ADMIN_PASSWORD
        ):
            async with async_session_factory() as session:
                user = StaffUser(
                    username=config.INITIAL_ADMIN_USERNAME,
                    password_hash=hash_password(config.INITIAL_ADMIN_PASSWORD),
                    role="admin",
                )
                session.add(user)
                await session.commit()
                await session.refresh(user)
            logger.info("Bootstrapped initial admin %s", user.username)
            return LoginResponse(access_token=create_access_token(user), user=UserResponse.model_validate(user))
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return LoginResponse(access_token=create_access_token(user), user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def get_me(user: StaffUser = Depends(require_user)):
    """Get current authenticated staff user and its permissions."""
    return UserResponse.model_validate(user)


@router.get("/users", response_model=list[UserResponse])
async def list_users(manager: StaffUser = Depends(require_user_manager)):
    """List gate and food staff. Admin accounts are not listed."""
    async with async_session_factory() as session:
        result = await session.execute(
            select(StaffUser).where(StaffUser.role != "admin").order_by(StaffUser.created_at.desc(), StaffUser.id.desc())
        )
        return [UserResponse.model_validate(u) for u in result.scalars().all()]


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(body: CreateUserRequest, manager: StaffUser = Depends(require_user_manager)):
    """Create a gate or food staff account."""
    if not body.username.strip() or not body.password:
        raise HTTPException(400, "Username and password are required")
    if body.role not in STAFF_ROLES:
        raise HTTPException(400, "Invalid role. Must be gate or food")
    async with async_session_factory() as session:
        existing = await session.execute(select(StaffUser).where(StaffUser.username == body.username.strip()))
        if existing.scalar_one_or_none():
            raise HTTPException(400, "Username already exists")
        user = StaffUser(
            username=body.username.strip(),
            password_hash=hash_password(body.password),
            role=body.role,
            created_by_id=manager.id,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
    logger.info("Staff user %s (%s) created by %s", user.username, user.role, manager.username)
    return UserResponse.model_validate(user)


async def _get_managed_user(session, user_id: int) -> StaffUser:
    user = await session.get(StaffUser, user_id)
    if not user:
        raise HTTPException(404, "User not found")
    if user.role == "admin":
        raise HTTPException(403, "Cannot modify admin accounts")
    return user


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(user_id: int, body: UpdateUserRequest, manager: StaffUser = Depends(require_user_manager)):
    """Update staff password or role. Changing role rewrites the stored permissions."""
    async with async_session_factory() as session:
        user = await _get_managed_user(session, user_id)
        if body.password is not None:
            if not body.password:
                raise HTTPException(400, "Password cannot be empty")
            user.password_hash = hash_password(body.password)
        if body.role is not None:
            if body.role not in STAFF_ROLES:
                raise HTTPException(400, "Invalid role. Must be gate or food")
            user.role = body.role
        await session.commit()
        await session.refresh(user)
        return UserResponse.model_validate(user)


@router.patch("/users/{user_id}/status", response_model=UserResponse)
async def set_user_status(user_id: int, body: UserStatusRequest, manager: StaffUser = Depends(require_user_manager)):
    """Activate or deactivate a staff account. Deactivated accounts are rejected at every endpoint."""
    async with async_session_factory() as session:
        user = await _get_managed_user(session, user_id)
        user.is_active = body.is_active
        await session.commit()
        await session.refresh(user)
    logger.info(
        "Staff user %s %s by %s", user.username, "activated" if user.is_active else "deactivated", manager.username
    )
    return UserResponse.model_validate(user)


@router.post("/test-email")
async def test_email(user: StaffUser = Depends(require_user)):
    """Check the outgoing mail configuration without sending a message."""
    result = await mailer.verify_config()
    if not result["success"]:
        raise HTTPException(500, f"Email configuration error: {result['error']}")
    return {"success": True, "message": "Email configuration is working"}
