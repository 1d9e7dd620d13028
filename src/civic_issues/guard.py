"""Authorization policy for issue operations.

Every capability check lives here so endpoints and services share one policy.
The functions are pure: they never touch storage.
"""

from typing import Optional

from .constants import Role
from .errors import Forbidden


def _is_admin(actor_role) -> bool:
    return actor_role == Role.ADMIN or actor_role == Role.ADMIN.value


def can_mutate(actor_id: Optional[str], actor_role, owner_id: Optional[str]) -> bool:
    """Admins may mutate anything; other actors only what they own."""
    if _is_admin(actor_role):
        return True
    return actor_id is not None and actor_id == owner_id


def can_view_admin_data(actor_role) -> bool:
    return _is_admin(actor_role)


def can_change_status(actor_role) -> bool:
    return _is_admin(actor_role)


def can_view_stats(actor_id: Optional[str], actor_role, owner_id: Optional[str]) -> bool:
    """Global stats are open to any actor; per-user stats to the user or an admin."""
    if owner_id is None:
        return True
    return can_mutate(actor_id, actor_role, owner_id)


def ensure_can_mutate(actor_id, actor_role, owner_id, action: str = "modify") -> None:
    if not can_mutate(actor_id, actor_role, owner_id):
        raise Forbidden(f"You can only {action} your own issues")


def ensure_can_view_admin_data(actor_role) -> None:
    if not can_view_admin_data(actor_role):
        raise Forbidden("Admin access required")


def ensure_can_change_status(actor_role) -> None:
    if not can_change_status(actor_role):
        raise Forbidden("Only administrators can change issue status")


def ensure_can_view_stats(actor_id, actor_role, owner_id) -> None:
    if not can_view_stats(actor_id, actor_role, owner_id):
        raise Forbidden("You can only view your own statistics")
