"""Entitlement template catalog model."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, utcnow

CATEGORIES = ("food", "beverage", "merchandise", "access", "other")


class EntitlementTemplate(Base):
    """Reusable entitlement definition. Deactivated, never deleted."""

    __tablename__ = "entitlement_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)  # unique case-insensitively
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    is_countable: Mapped[bool] = mapped_column(Boolean, default=False)
    max_count: Mapped[int] = mapped_column(Integer, default=1)
    default_for_players: Mapped[bool] = mapped_column(Boolean, default=False)
    default_for_participants: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def applies_to(self, is_player: bool) -> bool:
        """True if this template is attached by default to this kind of participant."""
        if is_player:
            return bool(self.default_for_players)
        return bool(self.default_for_participants)
