"""Database models."""
from core.models.base import Base, init_db
from core.models.staff import StaffUser
from core.models.template import EntitlementTemplate
from core.models.participant import (
    EntitlementHistory,
    EntitlementInstance,
    GroupEntitlementHistory,
    Participant,
    ParticipantGroup,
    TypeChangeHistory,
)
from core.models.group import Group, GroupMember
from core.models.setting import EventSetting  # noqa: F401 - for metadata

__all__ = [
    "Base",
    "StaffUser",
    "EntitlementTemplate",
    "Participant",
    "EntitlementInstance",
    "EntitlementHistory",
    "TypeChangeHistory",
    "ParticipantGroup",
    "GroupEntitlementHistory",
    "Group",
    "GroupMember",
    "EventSetting",
    "init_db",
]
