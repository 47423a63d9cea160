"""Staff account model with role-derived permissions."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from core.models.base import Base, utcnow
from core.permissions import ROLES, permissions_for_role


class StaffUser(Base):
    """Staff member who operates the gate or the food counters."""

    __tablename__ = "staff_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="food")  # admin, gate, food
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Stored, not derived per request: assigning role rewrites these.
    can_mark_attendance: Mapped[bool] = mapped_column(Boolean, default=False)
    can_distribute_food: Mapped[bool] = mapped_column(Boolean, default=False)
    can_undo_actions: Mapped[bool] = mapped_column(Boolean, default=False)
    can_manage_users: Mapped[bool] = mapped_column(Boolean, default=False)
    can_manage_settings: Mapped[bool] = mapped_column(Boolean, default=False)

    def __init__(self, **kwargs):
        kwargs.setdefault("role", "food")
        super().__init__(**kwargs)

    @validates("role")
    def _apply_role(self, key: str, role: str) -> str:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        for name, granted in permissions_for_role(role).items():
            setattr(self, name, granted)
        return role

    @property
    def permissions(self) -> dict[str, bool]:
        return {name: bool(getattr(self, name)) for name in permissions_for_role(self.role)}

    def has_permission(self, permission: str) -> bool:
        return bool(self.permissions.get(permission))
