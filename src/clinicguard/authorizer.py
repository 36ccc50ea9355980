"""
Authorizer

Pure decision functions. Each check takes everything it needs as arguments
(including the outcome of any store lookup) and returns an AccessDecision.
Nothing here performs I/O or writes audit entries.
"""

from typing import Iterable

from clinicguard.audit import AuditAction
from clinicguard.errors import (
    ApprovalPendingError,
    AuthenticationError,
    OwnershipMismatchError,
    PermissionDeniedError,
    RoleMismatchError,
    TenantMismatchError,
)
from clinicguard.models import AccessDecision, Principal, Role
from clinicguard.permissions import Permission, can_access
from clinicguard.tenancy import is_same_tenant


def _roles(roles: Role | str | Iterable[Role | str]) -> tuple[Role, ...]:
    if isinstance(roles, (Role, str)):
        roles = [roles]
    return tuple(Role(r) for r in roles)


class Authorizer:
    """Produces allow/deny decisions for each guard in the chain."""

    def check_session(self, principal: Principal | None, reason: str = "no_session") -> AccessDecision:
        if principal is None:
            return AccessDecision(
                allowed=False,
                guard="session",
                action=AuditAction.AUTH_FAILED.value,
                reason=reason,
                error=AuthenticationError,
            )
        return AccessDecision(
            allowed=True,
            guard="session",
            action=AuditAction.AUTH_SUCCESS.value,
            reason="session_valid",
            resource_id=principal.id,
        )

    def check_role(
        self,
        principal: Principal,
        roles: Role | str | Iterable[Role | str],
    ) -> AccessDecision:
        allowed_roles = _roles(roles)
        if principal.role in allowed_roles:
            return AccessDecision(
                allowed=True,
                guard="role",
                action="ROLE_GRANTED",
                reason="role_allowed",
                resource_id=principal.id,
            )
        return AccessDecision(
            allowed=False,
            guard="role",
            action=AuditAction.ACCESS_DENIED.value,
            reason="role_not_allowed",
            resource_id=principal.id,
            error=RoleMismatchError,
            details={
                "requiredRole": ",".join(r.value for r in allowed_roles),
                "userRole": principal.role.value,
            },
        )

    def check_approved_doctor(self, principal: Principal) -> AccessDecision:
        role = self.check_role(principal, Role.DOCTOR)
        if not role.allowed:
            return role
        if not principal.metadata.approved:
            return AccessDecision(
                allowed=False,
                guard="approval",
                action=AuditAction.DOCTOR_APPROVAL_PENDING.value,
                reason="doctor_not_approved",
                resource_type="doctor",
                resource_id=principal.metadata.doctor_id or principal.id,
                error=ApprovalPendingError,
            )
        return AccessDecision(
            allowed=True,
            guard="approval",
            action="DOCTOR_APPROVED",
            reason="doctor_approved",
            resource_type="doctor",
            resource_id=principal.metadata.doctor_id or principal.id,
        )

    def check_clinic(
        self,
        principal: Principal,
        resource_clinic_id: str | None,
        resource_type: str,
        resource_id: str,
    ) -> AccessDecision:
        if is_same_tenant(resource_clinic_id, principal.clinic_id):
            return AccessDecision(
                allowed=True,
                guard="tenant",
                action="CLINIC_ACCESS_GRANTED",
                reason="same_clinic",
                resource_type=resource_type,
                resource_id=resource_id,
            )
        return AccessDecision(
            allowed=False,
            guard="tenant",
            action=AuditAction.CLINIC_ACCESS_DENIED.value,
            reason="resource_has_no_clinic" if not resource_clinic_id else "clinic_mismatch",
            resource_type=resource_type,
            resource_id=resource_id,
            error=TenantMismatchError,
        )

    def check_patient_self(self, principal: Principal, patient_id: str) -> AccessDecision:
        if principal.role is not Role.PATIENT:
            reason = "patient_role_required"
        elif not principal.metadata.patient_id:
            reason = "patient_profile_missing"
        elif principal.metadata.patient_id != patient_id:
            reason = "not_own_record"
        else:
            return AccessDecision(
                allowed=True,
                guard="ownership",
                action="OWNERSHIP_GRANTED",
                reason="own_record",
                resource_type="patient",
                resource_id=patient_id,
            )
        return AccessDecision(
            allowed=False,
            guard="ownership",
            action=AuditAction.OWNERSHIP_DENIED.value,
            reason=reason,
            resource_type="patient",
            resource_id=patient_id,
            error=OwnershipMismatchError,
        )

    def check_doctor_relationship(
        self,
        principal: Principal,
        patient_id: str,
        has_relationship: bool,
    ) -> AccessDecision:
        """``has_relationship`` is the relationship store's answer for this pair."""
        if principal.role is not Role.DOCTOR:
            action, reason = AuditAction.OWNERSHIP_DENIED, "doctor_role_required"
        elif not principal.metadata.doctor_id:
            action, reason = AuditAction.OWNERSHIP_DENIED, "doctor_profile_missing"
        elif not has_relationship:
            action, reason = AuditAction.DOCTOR_PATIENT_RELATIONSHIP_NOT_FOUND, "no_care_relationship"
        else:
            return AccessDecision(
                allowed=True,
                guard="relationship",
                action=AuditAction.PHI_ACCESS_GRANTED.value,
                reason="care_relationship",
                resource_type="patient",
                resource_id=patient_id,
            )
        return AccessDecision(
            allowed=False,
            guard="relationship",
            action=action.value,
            reason=reason,
            resource_type="patient",
            resource_id=patient_id,
            error=OwnershipMismatchError,
        )

    def check_permission(
        self,
        principal: Principal,
        permission: Permission | str,
        resource_type: str = "user",
        resource_id: str | None = None,
    ) -> AccessDecision:
        if can_access(principal.role, permission):
            return AccessDecision(
                allowed=True,
                guard="permission",
                action="PERMISSION_GRANTED",
                reason="permission_held",
                resource_type=resource_type,
                resource_id=resource_id,
            )
        return AccessDecision(
            allowed=False,
            guard="permission",
            action=AuditAction.PERMISSION_DENIED.value,
            reason="permission_missing",
            resource_type=resource_type,
            resource_id=resource_id,
            error=PermissionDeniedError,
            details={"userRole": principal.role.value},
        )
