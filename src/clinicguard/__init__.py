"""
ClinicGuard

Authorization and audit for multi-clinic healthcare applications:
- Identity resolution from bearer credentials (local JWT or OIDC)
- Static role permission matrix
- Clinic (tenant) isolation on every read and write
- Patient ownership and doctor-patient relationship checks
- PHI-safe, non-blocking audit logging
"""

__version__ = "0.1.0"

from clinicguard.audit import AuditAction, AuditLogger, Auditor, sanitize_metadata
from clinicguard.authorizer import Authorizer
from clinicguard.errors import (
    ApprovalPendingError,
    AuthenticationError,
    GuardError,
    InternalError,
    NotFoundError,
    OwnershipMismatchError,
    PermissionDeniedError,
    RoleMismatchError,
    TenantMismatchError,
    ValidationError,
)
from clinicguard.guards import Guard
from clinicguard.identity import IdentityResolver
from clinicguard.models import (
    AccessDecision,
    AuditLogEntry,
    Principal,
    PrincipalMetadata,
    RequestContext,
    Resource,
    Role,
)
from clinicguard.permissions import (
    Permission,
    can_access,
    can_access_all,
    can_access_any,
    get_role_permissions,
    get_route_permission,
    requires_ownership,
)
from clinicguard.tenancy import (
    enforce_tenant,
    enforce_tenant_on_resources,
    fetch_with_tenant,
    tenant_scope,
    verify_nested_tenant,
    with_tenant_create_data,
)
from clinicguard.validation import find_spoofed_query_params, validate_route_id, validate_route_ids

__all__ = [
    # Models
    "AccessDecision",
    "AuditLogEntry",
    "Principal",
    "PrincipalMetadata",
    "RequestContext",
    "Resource",
    "Role",
    # Errors
    "GuardError",
    "AuthenticationError",
    "RoleMismatchError",
    "ApprovalPendingError",
    "TenantMismatchError",
    "OwnershipMismatchError",
    "PermissionDeniedError",
    "ValidationError",
    "NotFoundError",
    "InternalError",
    # Permissions
    "Permission",
    "can_access",
    "can_access_any",
    "can_access_all",
    "get_role_permissions",
    "get_route_permission",
    "requires_ownership",
    # Tenancy
    "enforce_tenant",
    "enforce_tenant_on_resources",
    "fetch_with_tenant",
    "tenant_scope",
    "verify_nested_tenant",
    "with_tenant_create_data",
    # Validation
    "find_spoofed_query_params",
    "validate_route_id",
    "validate_route_ids",
    # Guards
    "Authorizer",
    "Guard",
    "IdentityResolver",
    # Audit
    "AuditAction",
    "AuditLogger",
    "Auditor",
    "sanitize_metadata",
]
