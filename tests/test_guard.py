import pytest

from civic_issues import guard
from civic_issues.errors import Forbidden


@pytest.mark.parametrize(
    "actor_id,role,owner_id,expected",
    [
        ("u1", "USER", "u1", True),
        ("u1", "USER", "u2", False),
        (None, "USER", "u2", False),
        ("u1", "ADMIN", "u2", True),
        ("u1", "ADMIN", "u1", True),
        ("anyone", "ADMIN", None, True),
    ],
)
def test_can_mutate(actor_id, role, owner_id, expected):
    assert guard.can_mutate(actor_id, role, owner_id) is expected


@pytest.mark.parametrize("role,expected", [("ADMIN", True), ("USER", False), ("MODERATOR", False)])
def test_admin_only_capabilities(role, expected):
    assert guard.can_view_admin_data(role) is expected
    assert guard.can_change_status(role) is expected


def test_stats_visibility():
    assert guard.can_view_stats("u1", "USER", None)
    assert guard.can_view_stats("u1", "USER", "u1")
    assert not guard.can_view_stats("u1", "USER", "u2")
    assert guard.can_view_stats("u1", "ADMIN", "u2")


def test_ensure_variants_raise_forbidden():
    with pytest.raises(Forbidden):
        guard.ensure_can_mutate("u1", "USER", "u2", "delete")
    with pytest.raises(Forbidden):
        guard.ensure_can_change_status("USER")
    guard.ensure_can_change_status("ADMIN")
