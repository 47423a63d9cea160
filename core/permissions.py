"""Role to permission mapping for staff accounts."""
from __future__ import annotations

ROLES = ("admin", "gate", "food")

PERMISSIONS = (
    "can_mark_attendance",
    "can_distribute_food",
    "can_undo_actions",
    "can_manage_users",
    "can_manage_settings",
)

_ROLE_GRANTS = {
    "admin": set(PERMISSIONS),
    "gate": {"can_mark_attendance"},
    "food": {"can_distribute_food"},
}


def permissions_for_role(role: str) -> dict[str, bool]:
    """Return the full permission set for a role. Unknown roles get nothing."""
    granted = _ROLE_GRANTS.get(role, set())
    return {name: name in granted for name in PERMISSIONS}
