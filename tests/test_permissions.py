"""
Tests for the role permission matrix.
"""

import pytest

from clinicguard.models import Role
from clinicguard.permissions import (
    ROLE_PERMISSIONS,
    ROUTE_PERMISSIONS,
    Permission,
    can_access,
    can_access_all,
    can_access_any,
    get_role_permissions,
    get_route_permission,
    requires_ownership,
)


class TestMatrix:
    """Test matrix structure."""

    def test_every_role_has_an_entry(self):
        for role in Role:
            assert role in ROLE_PERMISSIONS, f"Missing permissions for {role.value}"

    def test_matrix_is_read_only(self):
        with pytest.raises(TypeError):
            ROLE_PERMISSIONS[Role.PATIENT] = frozenset()  # type: ignore[index]

    def test_admin_is_superset_of_doctor(self):
        assert ROLE_PERMISSIONS[Role.DOCTOR] <= ROLE_PERMISSIONS[Role.ADMIN]

    def test_patient_has_no_admin_tokens(self):
        assert not any(p.resource == "admin" for p in ROLE_PERMISSIONS[Role.PATIENT])

    def test_get_role_permissions_unknown_role(self):
        assert get_role_permissions("support") == frozenset()


class TestCanAccess:
    """Test single permission checks."""

    def test_direct_grant(self):
        assert can_access(Role.DOCTOR, Permission.NOTES_CREATE)
        assert can_access("patient", "forms:submit")

    def test_patient_cannot_create_notes(self):
        assert not can_access(Role.PATIENT, Permission.NOTES_CREATE)

    def test_manage_implies_resource_actions(self):
        # notes:manage is held by doctors, notes:delete is not granted directly
        assert Permission.NOTES_DELETE not in ROLE_PERMISSIONS[Role.DOCTOR]
        assert can_access(Role.DOCTOR, Permission.NOTES_DELETE)

    def test_admin_full_access(self):
        for permission in Permission:
            assert can_access(Role.ADMIN, permission)

    def test_doctor_has_no_admin_access(self):
        assert not can_access(Role.DOCTOR, Permission.ADMIN_AUDIT_LOGS)

    def test_unknown_role_denied(self):
        assert not can_access("support", Permission.APPOINTMENTS_VIEW)

    def test_unknown_token_denied(self):
        assert not can_access(Role.ADMIN, "spaceships:launch")

    def test_deterministic(self):
        results = {can_access(Role.PATIENT, Permission.BILLING_REFUND) for _ in range(50)}
        assert results == {False}


class TestAnyAll:
    """Test multi-permission checks."""

    def test_any(self):
        assert can_access_any(Role.PATIENT, [Permission.NOTES_CREATE, Permission.NOTES_VIEW])
        assert not can_access_any(Role.PATIENT, [Permission.NOTES_CREATE, Permission.LABS_CREATE])

    def test_all(self):
        assert can_access_all(Role.DOCTOR, [Permission.NOTES_VIEW, Permission.LABS_CREATE])
        assert not can_access_all(Role.PATIENT, [Permission.NOTES_VIEW, Permission.LABS_CREATE])

    def test_empty_lists_deny(self):
        assert not can_access_any(Role.ADMIN, [])
        assert not can_access_all(Role.ADMIN, [])


class TestOwnershipAndRoutes:
    """Test ownership flags and route lookups."""

    def test_requires_ownership(self):
        assert requires_ownership(Permission.FILES_VIEW)
        assert requires_ownership("patients:view")
        assert not requires_ownership(Permission.MESSAGES_SEND)
        assert not requires_ownership("unknown:thing")

    def test_method_specific_route_wins(self):
        assert get_route_permission("POST", "/api/appointments") == (Permission.APPOINTMENTS_CREATE,)

    def test_exact_path_for_get(self):
        assert get_route_permission("GET", "/api/appointments") == (Permission.APPOINTMENTS_VIEW,)

    def test_prefix_match_uses_longest_prefix(self):
        assert get_route_permission("GET", "/api/admin/users/42") == (Permission.ADMIN_MANAGE_USERS,)
        assert get_route_permission("GET", "/api/admin/anything") == (Permission.ADMIN_FULL_ACCESS,)

    def test_prefix_match_for_method_keys(self):
        assert get_route_permission("DELETE", "/api/files/f1") == (Permission.FILES_DELETE,)

    def test_prefix_does_not_match_partial_segment(self):
        assert get_route_permission("GET", "/api/filesystem") is None

    def test_unknown_route(self):
        assert get_route_permission("GET", "/api/unknown") is None

    def test_route_tokens_are_known_permissions(self):
        for perms in ROUTE_PERMISSIONS.values():
            for p in perms:
                assert isinstance(p, Permission)
