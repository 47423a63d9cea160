"""Participant ledger models: participant, entitlement instances and history logs."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.models.base import Base, utcnow

FOOD_PREFERENCES = ("vegetarian", "chicken", "fish", "mixed", "no-preference")


class Participant(Base):
    """Registered attendee. Never physically deleted."""

    __tablename__ = "participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[str] = mapped_column(String(16), unique=True, nullable=False, index=True)  # QR payload
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_player: Mapped[bool] = mapped_column(Boolean, default=False)
    food_preference: Mapped[str] = mapped_column(String(16), default="no-preference")
    qr_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # data:image/png;base64,...
    is_present: Mapped[bool] = mapped_column(Boolean, default=False)
    attendance_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    attendance_marked_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    entitlements = relationship(
        "EntitlementInstance",
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="EntitlementInstance.id",
        lazy="selectin",
    )
    entitlement_history = relationship(
        "EntitlementHistory",
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="EntitlementHistory.id",
        lazy="selectin",
    )
    type_change_history = relationship(
        "TypeChangeHistory",
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="TypeChangeHistory.id",
        lazy="selectin",
    )
    groups = relationship(
        "ParticipantGroup",
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="ParticipantGroup.id",
        lazy="selectin",
    )
    group_entitlement_history = relationship(
        "GroupEntitlementHistory",
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="GroupEntitlementHistory.id",
        lazy="selectin",
    )

    def find_entitlement(
        self, name: str | None = None, template_id: int | None = None
    ) -> Optional["EntitlementInstance"]:
        """Find an instance by template reference, falling back to a case-insensitive name match."""
        if template_id is not None:
            for ent in self.entitlements:
                if ent.template_id == template_id:
                    return ent
        if name:
            wanted = name.strip().lower()
            for ent in self.entitlements:
                if ent.name.lower() == wanted:
                    return ent
        return None


class EntitlementInstance(Base):
    """One entitlement held by one participant.

    Template fields are copied at attach time so later catalog edits do not
    change what a participant already holds. ``given_at`` and ``given_by`` hold
    one entry per granted unit, oldest first.
    """

    __tablename__ = "entitlement_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    template_id: Mapped[Optional[int]] = mapped_column(ForeignKey("entitlement_templates.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(16), default="other")
    is_countable: Mapped[bool] = mapped_column(Boolean, default=False)
    max_count: Mapped[int] = mapped_column(Integer, default=1)
    given: Mapped[int] = mapped_column(Integer, default=0)
    given_at: Mapped[list] = mapped_column(JSON, default=list)  # ISO timestamps
    given_by: Mapped[list] = mapped_column(JSON, default=list)  # staff user ids
    added_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)  # None = system
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    undone_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    undone_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_undone_count: Mapped[int] = mapped_column(Integer, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    participant: Mapped["Participant"] = relationship("Participant", back_populates="entitlements")

    __mapper_args__ = {"version_id_col": version}


class EntitlementHistory(Base):
    """Append-only log of entitlement actions on a participant."""

    __tablename__ = "entitlement_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    template_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    entitlement_name: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)  # added, distributed, undone, removed
    count: Mapped[int] = mapped_column(Integer, default=1)
    performed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    participant: Mapped["Participant"] = relationship("Participant", back_populates="entitlement_history")


class TypeChangeHistory(Base):
    """Player/participant classification changes."""

    __tablename__ = "type_change_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    previous_type: Mapped[bool] = mapped_column(Boolean, nullable=False)  # True = player
    new_type: Mapped[bool] = mapped_column(Boolean, nullable=False)
    changed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    participant: Mapped["Participant"] = relationship("Participant", back_populates="type_change_history")


class ParticipantGroup(Base):
    """Backlink from a participant to a group it belongs to."""

    __tablename__ = "participant_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), nullable=False, index=True)
    group_name: Mapped[str] = mapped_column(String(128), nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    participant: Mapped["Participant"] = relationship("Participant", back_populates="groups")


class GroupEntitlementHistory(Base):
    """Group-scoped distribution record, used to undo a group's last distribution."""

    __tablename__ = "group_entitlement_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), nullable=False, index=True)
    group_name: Mapped[str] = mapped_column(String(128), nullable=False)
    template_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    entitlement_name: Mapped[str] = mapped_column(String(128), nullable=False)
    entitlement_type: Mapped[str] = mapped_column(String(16), default="template")  # template | legacy
    count: Mapped[int] = mapped_column(Integer, default=1)
    distributed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    distributed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    undone_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    undone_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_users.id"), nullable=True)

    participant: Mapped["Participant"] = relationship("Participant", back_populates="group_entitlement_history")
