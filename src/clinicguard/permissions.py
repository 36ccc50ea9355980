"""
Permission Matrix

Static role -> capability mapping, loaded once at import.
The table is read-only process-wide state; every lookup is a pure function
that defaults to deny.
"""

from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from clinicguard.models import Role


class Permission(str, Enum):
    """Capability tokens in ``resource:action`` form."""

    # Appointments
    APPOINTMENTS_VIEW = "appointments:view"
    APPOINTMENTS_CREATE = "appointments:create"
    APPOINTMENTS_UPDATE = "appointments:update"
    APPOINTMENTS_DELETE = "appointments:delete"
    APPOINTMENTS_MANAGE = "appointments:manage"

    # Visit notes
    NOTES_VIEW = "notes:view"
    NOTES_CREATE = "notes:create"
    NOTES_UPDATE = "notes:update"
    NOTES_DELETE = "notes:delete"
    NOTES_APPROVE = "notes:approve"
    NOTES_MANAGE = "notes:manage"

    # Prescriptions
    PRESCRIPTIONS_VIEW = "prescriptions:view"
    PRESCRIPTIONS_CREATE = "prescriptions:create"
    PRESCRIPTIONS_UPDATE = "prescriptions:update"
    PRESCRIPTIONS_DELETE = "prescriptions:delete"
    PRESCRIPTIONS_MANAGE = "prescriptions:manage"

    # Lab orders
    LABS_VIEW = "labs:view"
    LABS_CREATE = "labs:create"
    LABS_UPDATE = "labs:update"
    LABS_DELETE = "labs:delete"
    LABS_MANAGE = "labs:manage"

    # Messages
    MESSAGES_VIEW = "messages:view"
    MESSAGES_SEND = "messages:send"
    MESSAGES_DELETE = "messages:delete"
    MESSAGES_MANAGE = "messages:manage"

    # Patients
    PATIENTS_VIEW = "patients:view"
    PATIENTS_CREATE = "patients:create"
    PATIENTS_UPDATE = "patients:update"
    PATIENTS_DELETE = "patients:delete"
    PATIENTS_MANAGE = "patients:manage"

    # Files
    FILES_VIEW = "files:view"
    FILES_UPLOAD = "files:upload"
    FILES_DELETE = "files:delete"
    FILES_MANAGE = "files:manage"

    # Intake forms
    FORMS_VIEW = "forms:view"
    FORMS_CREATE = "forms:create"
    FORMS_UPDATE = "forms:update"
    FORMS_DELETE = "forms:delete"
    FORMS_SUBMIT = "forms:submit"
    FORMS_MANAGE = "forms:manage"

    # Billing
    BILLING_VIEW = "billing:view"
    BILLING_CREATE = "billing:create"
    BILLING_UPDATE = "billing:update"
    BILLING_REFUND = "billing:refund"
    BILLING_MANAGE = "billing:manage"

    # Consultations
    CONSULTATIONS_VIEW = "consultations:view"
    CONSULTATIONS_CREATE = "consultations:create"
    CONSULTATIONS_UPDATE = "consultations:update"
    CONSULTATIONS_END = "consultations:end"
    CONSULTATIONS_MANAGE = "consultations:manage"

    # Video sessions
    VIDEO_JOIN = "video:join"
    VIDEO_MODERATE = "video:moderate"
    VIDEO_RECORD = "video:record"

    # Administration
    ADMIN_AUDIT_LOGS = "admin:audit_logs"
    ADMIN_APPROVE_DOCTORS = "admin:approve_doctors"
    ADMIN_MANAGE_USERS = "admin:manage_users"
    ADMIN_SYSTEM_SETTINGS = "admin:system_settings"
    ADMIN_FULL_ACCESS = "admin:full_access"

    @property
    def resource(self) -> str:
        return self.value.split(":", 1)[0]


_DOCTOR = frozenset({
    Permission.APPOINTMENTS_VIEW,
    Permission.APPOINTMENTS_CREATE,
    Permission.APPOINTMENTS_UPDATE,
    Permission.APPOINTMENTS_DELETE,
    Permission.APPOINTMENTS_MANAGE,
    Permission.NOTES_VIEW,
    Permission.NOTES_CREATE,
    Permission.NOTES_UPDATE,
    Permission.NOTES_APPROVE,
    Permission.NOTES_MANAGE,
    Permission.PRESCRIPTIONS_VIEW,
    Permission.PRESCRIPTIONS_CREATE,
    Permission.PRESCRIPTIONS_UPDATE,
    Permission.PRESCRIPTIONS_DELETE,
    Permission.PRESCRIPTIONS_MANAGE,
    Permission.LABS_VIEW,
    Permission.LABS_CREATE,
    Permission.LABS_UPDATE,
    Permission.LABS_DELETE,
    Permission.LABS_MANAGE,
    Permission.MESSAGES_VIEW,
    Permission.MESSAGES_SEND,
    Permission.MESSAGES_DELETE,
    Permission.MESSAGES_MANAGE,
    # Own patients only; relationship is enforced by the guards
    Permission.PATIENTS_VIEW,
    Permission.PATIENTS_UPDATE,
    Permission.FILES_VIEW,
    Permission.FILES_UPLOAD,
    Permission.FORMS_VIEW,
    Permission.FORMS_CREATE,
    Permission.FORMS_UPDATE,
    Permission.FORMS_DELETE,
    Permission.FORMS_MANAGE,
    Permission.BILLING_VIEW,
    Permission.BILLING_MANAGE,
    Permission.CONSULTATIONS_VIEW,
    Permission.CONSULTATIONS_CREATE,
    Permission.CONSULTATIONS_UPDATE,
    Permission.CONSULTATIONS_END,
    Permission.CONSULTATIONS_MANAGE,
    Permission.VIDEO_JOIN,
    Permission.VIDEO_MODERATE,
    Permission.VIDEO_RECORD,
})

_PATIENT = frozenset({
    Permission.APPOINTMENTS_VIEW,
    Permission.APPOINTMENTS_CREATE,
    Permission.APPOINTMENTS_UPDATE,
    Permission.NOTES_VIEW,
    Permission.PRESCRIPTIONS_VIEW,
    Permission.LABS_VIEW,
    Permission.MESSAGES_VIEW,
    Permission.MESSAGES_SEND,
    Permission.PATIENTS_VIEW,
    Permission.PATIENTS_UPDATE,
    Permission.FILES_VIEW,
    Permission.FILES_UPLOAD,
    Permission.FORMS_VIEW,
    Permission.FORMS_SUBMIT,
    Permission.BILLING_VIEW,
    Permission.CONSULTATIONS_VIEW,
    Permission.VIDEO_JOIN,
})

_ADMIN = _DOCTOR | frozenset({
    Permission.ADMIN_AUDIT_LOGS,
    Permission.ADMIN_APPROVE_DOCTORS,
    Permission.ADMIN_MANAGE_USERS,
    Permission.ADMIN_SYSTEM_SETTINGS,
    Permission.ADMIN_FULL_ACCESS,
    Permission.PATIENTS_MANAGE,
    Permission.FILES_MANAGE,
    Permission.BILLING_MANAGE,
})


ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType({
    Role.DOCTOR: _DOCTOR,
    Role.PATIENT: _PATIENT,
    Role.ADMIN: _ADMIN,
})


def _verify_matrix() -> None:
    missing = set(Role) - set(ROLE_PERMISSIONS)
    if missing:
        raise RuntimeError(
            f"Permission matrix has no entry for role(s): {sorted(r.value for r in missing)}"
        )


_verify_matrix()


# Permissions that patients only hold over their own records
OWNERSHIP_REQUIRED: frozenset[Permission] = frozenset({
    Permission.APPOINTMENTS_UPDATE,
    Permission.NOTES_VIEW,
    Permission.PRESCRIPTIONS_VIEW,
    Permission.LABS_VIEW,
    Permission.PATIENTS_VIEW,
    Permission.PATIENTS_UPDATE,
    Permission.FILES_VIEW,
    Permission.BILLING_VIEW,
    Permission.CONSULTATIONS_VIEW,
})


def _coerce_role(role: Role | str) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


def _coerce_permission(permission: Permission | str) -> Permission | None:
    try:
        return Permission(permission)
    except ValueError:
        return None


def can_access(role: Role | str, permission: Permission | str) -> bool:
    """
    Check if a role holds a permission.

    A ``<resource>:manage`` grant implies every action on that resource, and
    ``admin:full_access`` implies everything for admins. Unknown roles or
    tokens are denied.
    """
    r = _coerce_role(role)
    p = _coerce_permission(permission)
    if r is None or p is None:
        return False

    granted = ROLE_PERMISSIONS[r]
    if p in granted:
        return True

    manage = _coerce_permission(f"{p.resource}:manage")
    if manage is not None and manage in granted:
        return True

    return r is Role.ADMIN and Permission.ADMIN_FULL_ACCESS in granted


def can_access_any(role: Role | str, permissions: Iterable[Permission | str]) -> bool:
    """True if the role holds at least one of the permissions."""
    return any(can_access(role, p) for p in permissions)


def can_access_all(role: Role | str, permissions: Iterable[Permission | str]) -> bool:
    """True if the role holds every permission. An empty request is denied."""
    perms = list(permissions)
    if not perms:
        return False
    return all(can_access(role, p) for p in perms)


def get_role_permissions(role: Role | str) -> frozenset[Permission]:
    r = _coerce_role(role)
    if r is None:
        return frozenset()
    return ROLE_PERMISSIONS[r]


def requires_ownership(permission: Permission | str) -> bool:
    """Whether a patient may only exercise this permission on their own data."""
    p = _coerce_permission(permission)
    return p in OWNERSHIP_REQUIRED if p is not None else False


# ==================== ROUTE TABLE ====================

ROUTE_PERMISSIONS: Mapping[str, tuple[Permission, ...]] = MappingProxyType({
    "/api/appointments": (Permission.APPOINTMENTS_VIEW,),
    "POST:/api/appointments": (Permission.APPOINTMENTS_CREATE,),
    "PUT:/api/appointments": (Permission.APPOINTMENTS_UPDATE,),
    "DELETE:/api/appointments": (Permission.APPOINTMENTS_DELETE,),
    "/api/visit-notes": (Permission.NOTES_VIEW,),
    "POST:/api/visit-notes": (Permission.NOTES_CREATE,),
    "PUT:/api/visit-notes": (Permission.NOTES_UPDATE,),
    "DELETE:/api/visit-notes": (Permission.NOTES_DELETE,),
    "/api/prescriptions": (Permission.PRESCRIPTIONS_VIEW,),
    "POST:/api/prescriptions": (Permission.PRESCRIPTIONS_CREATE,),
    "/api/labs": (Permission.LABS_VIEW,),
    "POST:/api/labs": (Permission.LABS_CREATE,),
    "/api/messages": (Permission.MESSAGES_VIEW,),
    "POST:/api/messages": (Permission.MESSAGES_SEND,),
    "DELETE:/api/messages": (Permission.MESSAGES_DELETE,),
    "/api/patients": (Permission.PATIENTS_VIEW,),
    "POST:/api/patients": (Permission.PATIENTS_CREATE,),
    "PUT:/api/patients": (Permission.PATIENTS_UPDATE,),
    "DELETE:/api/patients": (Permission.PATIENTS_DELETE,),
    "/api/files": (Permission.FILES_VIEW,),
    "/api/files/upload-url": (Permission.FILES_UPLOAD,),
    "DELETE:/api/files": (Permission.FILES_DELETE,),
    "/api/forms": (Permission.FORMS_VIEW,),
    "POST:/api/forms/submit": (Permission.FORMS_SUBMIT,),
    "POST:/api/forms": (Permission.FORMS_CREATE,),
    "/api/billing": (Permission.BILLING_VIEW,),
    "/api/payments": (Permission.BILLING_VIEW,),
    "POST:/api/payments": (Permission.BILLING_CREATE,),
    "/api/consultations": (Permission.CONSULTATIONS_VIEW,),
    "POST:/api/consultations": (Permission.CONSULTATIONS_CREATE,),
    "/api/video": (Permission.VIDEO_JOIN,),
    "/api/admin/audit-logs": (Permission.ADMIN_AUDIT_LOGS,),
    "/api/admin/users": (Permission.ADMIN_MANAGE_USERS,),
    "/api/admin/settings": (Permission.ADMIN_SYSTEM_SETTINGS,),
    "/api/admin": (Permission.ADMIN_FULL_ACCESS,),
})


def get_route_permission(method: str, path: str) -> tuple[Permission, ...] | None:
    """
    Resolve the permissions a route requires.

    Lookup order: ``METHOD:path`` exact, then ``path`` exact, then the longest
    matching prefix for the same method. Bare keys only apply to GET.
    """
    method = (method or "GET").upper()
    exact = ROUTE_PERMISSIONS.get(f"{method}:{path}")
    if exact is not None:
        return exact
    exact = ROUTE_PERMISSIONS.get(path)
    if exact is not None and method == "GET":
        return exact

    best: tuple[int, tuple[Permission, ...]] | None = None
    for key, perms in ROUTE_PERMISSIONS.items():
        key_method, _, key_path = key.rpartition(":")
        if key_method and key_method != method:
            continue
        if not key_method and method != "GET":
            continue
        if path == key_path or path.startswith(key_path.rstrip("/") + "/"):
            if best is None or len(key_path) > best[0]:
                best = (len(key_path), perms)
    return best[1] if best else None
