"""Issue lifecycle transitions."""

from datetime import datetime
from typing import Dict, FrozenSet

from .constants import IssueStatus
from .errors import InvalidStatus, InvalidTransition, field_error
from .guard import ensure_can_change_status

# Documented lifecycle. RESOLVED and REJECTED have no outgoing edges.
TRANSITIONS: Dict[IssueStatus, FrozenSet[IssueStatus]] = {
    IssueStatus.NEW: frozenset({IssueStatus.IN_PROGRESS, IssueStatus.REJECTED}),
    IssueStatus.IN_PROGRESS: frozenset({IssueStatus.RESOLVED, IssueStatus.REJECTED}),
    IssueStatus.RESOLVED: frozenset(),
    IssueStatus.REJECTED: frozenset(),
}

INITIAL_STATUS = IssueStatus.NEW


def is_terminal(status: IssueStatus) -> bool:
    return not TRANSITIONS[status]


def parse_status(value) -> IssueStatus:
    if isinstance(value, IssueStatus):
        return value
    try:
        return IssueStatus(value)
    except ValueError:
        allowed = ", ".join(member.value for member in IssueStatus)
        raise InvalidStatus(
            "Invalid status provided",
            [field_error("status", f"Must be one of: {allowed}", value)],
        ) from None


def transition(current, requested, actor_role, strict: bool = False) -> IssueStatus:
    """Validate a requested status change and return the new status.

    The role check runs first, so a non-admin is refused whatever value it
    asks for. Without ``strict`` any enumeration member is accepted from any
    state; with it, only edges in :data:`TRANSITIONS` (or a no-op) pass.
    """
    ensure_can_change_status(actor_role)
    new_status = parse_status(requested)
    if strict:
        current_status = parse_status(current)
        if new_status != current_status and new_status not in TRANSITIONS[current_status]:
            raise InvalidTransition(
                f"Cannot move issue from {current_status.value} to {new_status.value}"
            )
    return new_status


def apply_status(issue, requested, actor_role, strict: bool = False) -> IssueStatus:
    """Run :func:`transition` and write the result onto ``issue``."""
    new_status = transition(issue.status, requested, actor_role, strict=strict)
    issue.status = new_status.value
    issue.updated_at = datetime.utcnow()
    return new_status
