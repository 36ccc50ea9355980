"""
Identity Resolver

Turns a bearer credential into a Principal. The provider proves who the
caller is; the role store decides what role and clinic they have.
"""

from datetime import datetime, timedelta
from typing import Callable, NoReturn

import structlog
from pydantic import ValidationError as PydanticValidationError

from clinicguard.audit import AuditAction, AuditLogger
from clinicguard.errors import AuthenticationError
from clinicguard.models import Principal, PrincipalMetadata, RequestContext, utcnow
from clinicguard.providers.base import BaseIdentityProvider, VerifiedIdentity
from clinicguard.stores import RoleStore

logger = structlog.get_logger(__name__)


Clock = Callable[[], datetime]


class IdentityResolver:
    """
    Resolve a Principal for one request.

    Failure reasons recorded in the audit trail:
        missing_credential, provider_rejected, session_expired,
        role_not_found, role_not_recognized, clinic_not_assigned
    """

    def __init__(
        self,
        provider: BaseIdentityProvider,
        role_store: RoleStore,
        audit_logger: AuditLogger | None = None,
        clock: Clock = utcnow,
        leeway_seconds: int = 0,
    ):
        self.provider = provider
        self.role_store = role_store
        self.audit_logger = audit_logger
        self.clock = clock
        self.leeway = timedelta(seconds=leeway_seconds)

    async def resolve_principal(self, credential: str | None, ctx: RequestContext) -> Principal:
        """
        Verify the credential and load the caller's role record.

        Raises:
            AuthenticationError: on any failure; there is no fallback role
        """
        if not credential or not credential.strip():
            self._fail("missing_credential", ctx)

        try:
            identity = await self.provider.verify_credential(credential.strip())
        except AuthenticationError as e:
            self._fail(e.details.get("reason", "provider_rejected"), ctx)

        if not self._session_active(identity):
            self._fail("session_expired", ctx, user_id=identity.subject)

        try:
            record = await self.role_store.get_role_record(identity.subject)
        except PydanticValidationError as e:
            logger.warning(
                "Unusable role record",
                user_id=identity.subject,
                errors=e.error_count(),
                request_id=ctx.request_id,
            )
            self._fail("role_not_recognized", ctx, user_id=identity.subject)
        if record is None:
            self._fail("role_not_found", ctx, user_id=identity.subject)
        if not record.clinic_id:
            self._fail("clinic_not_assigned", ctx, user_id=identity.subject)

        principal = Principal(
            id=identity.subject,
            email=identity.email,
            role=record.role,
            clinic_id=record.clinic_id,
            email_verified=identity.email_verified,
            metadata=PrincipalMetadata(
                doctor_id=record.doctor_id,
                patient_id=record.patient_id,
                approved=record.approved,
            ),
            session_expires_at=identity.expires_at,
        )

        if self.audit_logger is not None:
            self.audit_logger.log_access(
                user_id=principal.id,
                clinic_id=principal.clinic_id,
                action=AuditAction.AUTH_SUCCESS,
                resource_type="user",
                resource_id=principal.id,
                ctx=ctx,
                metadata={"userRole": principal.role.value},
            )
        return principal

    def _session_active(self, identity: VerifiedIdentity) -> bool:
        if identity.expires_at is None:
            return False
        return self.clock() < identity.expires_at + self.leeway

    def _fail(self, reason: str, ctx: RequestContext, user_id: str = "anonymous") -> NoReturn:
        logger.info("Authentication failed", reason=reason, request_id=ctx.request_id)
        if self.audit_logger is not None:
            self.audit_logger.log_access(
                user_id=user_id,
                clinic_id="unknown",
                action=AuditAction.AUTH_FAILED,
                resource_type="user",
                resource_id=user_id,
                ctx=ctx,
                success=False,
                metadata={"reason": reason},
            )
        raise AuthenticationError(reason=reason)
