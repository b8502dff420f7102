"""
Unit tests for actor roles and permission guards.
"""

import pytest

from backend.src.services.exceptions import PermissionDeniedError
from backend.src.services.permissions import (
    SYSTEM_USER_ID,
    Actor,
    require_owner,
    require_owner_or_approver,
    require_role,
    resolve_role,
    system_actor,
)


class TestResolveRole:
    """Tests for resolve_role."""

    def test_explicit_role_wins(self):
        assert resolve_role("Approver", "someone@emanuelnyc.org", "@emanuelnyc.org") == "approver"

    def test_admin_domain(self):
        assert resolve_role(None, "Cantor@EmanuelNYC.org", "@emanuelnyc.org") == "admin"

    def test_unknown_role_falls_back(self):
        assert resolve_role("superuser", "guest@example.org", "@emanuelnyc.org") == "requester"

    def test_no_email(self):
        assert resolve_role(None, None, "@emanuelnyc.org") == "requester"


class TestGuards:
    """Tests for the require_* guards."""

    def test_role_hierarchy(self, viewer, requester, approver):
        admin = Actor(user_id="user-admin", role="admin")

        assert not viewer.has_role("requester")
        assert requester.has_role("requester")
        assert not requester.is_approver
        assert approver.is_approver
        assert admin.has_role("approver")

    def test_require_role(self, requester):
        with pytest.raises(PermissionDeniedError) as exc_info:
            require_role(requester, "approver", "approve reservations")

        assert exc_info.value.required_role == "approver"

    def test_owner_or_approver(self, requester, other_requester, approver):
        require_owner_or_approver(requester, requester.user_id, "submit")
        require_owner_or_approver(approver, requester.user_id, "submit")

        with pytest.raises(PermissionDeniedError):
            require_owner_or_approver(other_requester, requester.user_id, "submit")

    def test_require_owner_excludes_approver(self, requester, approver):
        require_owner(requester, requester.user_id, "request an edit")

        with pytest.raises(PermissionDeniedError):
            require_owner(approver, requester.user_id, "request an edit")

    def test_ownerless_record(self, requester):
        with pytest.raises(PermissionDeniedError):
            require_owner(requester, None, "request an edit")

    def test_system_actor(self):
        actor = system_actor()

        assert actor.user_id == SYSTEM_USER_ID
        assert actor.is_approver
