"""
Guard Orchestrator

Runs the guard chain for a request in a fixed order:

    session -> role -> tenant -> ownership/relationship -> permission

Each step asks the Authorizer for a decision, publishes it to the decision
subscribers (the Auditor among them) and raises the decision's error on
denial. The first failing step ends the chain.
"""

from typing import Awaitable, Callable, Iterable, Literal, TypeVar

import structlog

from clinicguard.audit import AuditAction
from clinicguard.authorizer import Authorizer
from clinicguard.errors import OwnershipMismatchError, TenantMismatchError, ValidationError
from clinicguard.identity import IdentityResolver
from clinicguard.logging import AUDIT_DIAGNOSTICS_LOGGER
from clinicguard.models import AccessDecision, Principal, RequestContext, Role
from clinicguard.permissions import Permission
from clinicguard.stores import RelationshipStore
from clinicguard.tenancy import fetch_with_tenant

logger = structlog.get_logger(__name__)
diagnostics = structlog.get_logger(AUDIT_DIAGNOSTICS_LOGGER)

T = TypeVar("T")

DecisionSubscriber = Callable[[AccessDecision, Principal | None, RequestContext], None]
OwnershipMode = Literal["self", "doctor", "self_or_doctor"]


class Guard:
    """
    Authorization guard for one application.

    Usage:
        guard = Guard(relationships, subscribers=[Auditor(audit_logger)])
        principal = await guard.authorize(
            principal, ctx,
            roles=[Role.DOCTOR],
            resource_clinic_id=chart.clinic_id,
            patient_id=chart.patient_id,
            ownership="doctor",
            permission=Permission.NOTES_VIEW,
        )
    """

    def __init__(
        self,
        relationship_store: RelationshipStore,
        subscribers: Iterable[DecisionSubscriber] = (),
        authorizer: Authorizer | None = None,
        identity_resolver: IdentityResolver | None = None,
    ):
        self.relationship_store = relationship_store
        self.subscribers: list[DecisionSubscriber] = list(subscribers)
        self.authorizer = authorizer or Authorizer()
        self.identity_resolver = identity_resolver

    def subscribe(self, subscriber: DecisionSubscriber) -> None:
        self.subscribers.append(subscriber)

    def _publish(
        self,
        decision: AccessDecision,
        principal: Principal | None,
        ctx: RequestContext,
    ) -> None:
        for subscriber in self.subscribers:
            try:
                subscriber(decision, principal, ctx)
            except Exception as e:
                diagnostics.error(
                    "Decision subscriber failed",
                    guard=decision.guard,
                    request_id=ctx.request_id,
                    error=str(e),
                )

    def _apply(
        self,
        decision: AccessDecision,
        principal: Principal | None,
        ctx: RequestContext,
    ) -> None:
        self._publish(decision, principal, ctx)
        if not decision.allowed:
            logger.info(
                "Access denied",
                guard=decision.guard,
                reason=decision.reason,
                request_id=ctx.request_id,
            )
        decision.raise_for_denial()

    # ==================== SESSION ====================

    async def authenticate(self, credential: str | None, ctx: RequestContext) -> Principal:
        """Resolve a principal through the configured identity resolver."""
        if self.identity_resolver is None:
            raise RuntimeError("Guard has no identity resolver configured")
        return await self.identity_resolver.resolve_principal(credential, ctx)

    async def require_session(self, principal: Principal | None, ctx: RequestContext) -> Principal:
        # AUTH_SUCCESS is already recorded by the resolver, only denials are published
        decision = self.authorizer.check_session(principal)
        if not decision.allowed:
            self._apply(decision, principal, ctx)
        return principal

    # ==================== ROLE ====================

    async def require_role(
        self,
        principal: Principal,
        roles: Role | str | Iterable[Role | str],
        ctx: RequestContext,
    ) -> Principal:
        self._apply(self.authorizer.check_role(principal, roles), principal, ctx)
        return principal

    async def require_approved_doctor(self, principal: Principal, ctx: RequestContext) -> Principal:
        self._apply(self.authorizer.check_approved_doctor(principal), principal, ctx)
        return principal

    # ==================== TENANT ====================

    async def require_clinic_access(
        self,
        principal: Principal,
        resource_clinic_id: str | None,
        resource_type: str,
        resource_id: str,
        ctx: RequestContext,
    ) -> None:
        decision = self.authorizer.check_clinic(
            principal, resource_clinic_id, resource_type, resource_id
        )
        self._apply(decision, principal, ctx)

    async def fetch_resource(
        self,
        fetch: Callable[..., Awaitable[T | None]],
        principal: Principal,
        resource_type: str,
        resource_id: str,
        ctx: RequestContext,
    ) -> T:
        """Tenant-scoped fetch; a foreign object slipping through is recorded as a violation."""
        try:
            return await fetch_with_tenant(fetch, principal, resource_type, resource_id, ctx)
        except TenantMismatchError as e:
            self._publish(
                AccessDecision(
                    allowed=False,
                    guard="tenant",
                    action=AuditAction.TENANT_ISOLATION_VIOLATION.value,
                    reason=str(e.details.get("reason", "clinic_mismatch")),
                    resource_type=resource_type,
                    resource_id=resource_id,
                    error=TenantMismatchError,
                ),
                principal,
                ctx,
            )
            raise

    # ==================== OWNERSHIP / RELATIONSHIP ====================

    async def require_patient_self_access(
        self,
        principal: Principal,
        patient_id: str,
        ctx: RequestContext,
    ) -> None:
        self._apply(self.authorizer.check_patient_self(principal, patient_id), principal, ctx)

    async def _relationship_decision(self, principal: Principal, patient_id: str) -> AccessDecision:
        linked = False
        if principal.role is Role.DOCTOR and principal.metadata.doctor_id:
            linked = await self.relationship_store.has_relationship(
                principal.metadata.doctor_id, patient_id, principal.clinic_id
            )
        return self.authorizer.check_doctor_relationship(principal, patient_id, linked)

    async def require_doctor_access_to_patient(
        self,
        principal: Principal,
        patient_id: str,
        ctx: RequestContext,
    ) -> None:
        self._apply(await self._relationship_decision(principal, patient_id), principal, ctx)

    async def ensure_ownership_or_doctor(
        self,
        principal: Principal,
        patient_id: str,
        ctx: RequestContext,
    ) -> None:
        """The patient themself, or a doctor with a care relationship. Admins are not let through."""
        if principal.role is Role.PATIENT:
            decision = self.authorizer.check_patient_self(principal, patient_id)
        elif principal.role is Role.DOCTOR:
            decision = await self._relationship_decision(principal, patient_id)
        else:
            decision = AccessDecision(
                allowed=False,
                guard="ownership",
                action=AuditAction.OWNERSHIP_DENIED.value,
                reason="role_not_permitted",
                resource_type="patient",
                resource_id=patient_id,
                error=OwnershipMismatchError,
            )
        self._apply(decision, principal, ctx)

    # ==================== PERMISSION ====================

    async def require_permission(
        self,
        principal: Principal,
        permission: Permission | str,
        ctx: RequestContext,
        resource_type: str = "user",
        resource_id: str | None = None,
    ) -> None:
        decision = self.authorizer.check_permission(
            principal, permission, resource_type, resource_id
        )
        self._apply(decision, principal, ctx)

    # ==================== CHAIN ====================

    async def authorize(
        self,
        principal: Principal | None,
        ctx: RequestContext,
        *,
        roles: Role | str | Iterable[Role | str] | None = None,
        approved_doctor: bool = False,
        resource_clinic_id: str | None = None,
        check_tenant: bool = False,
        resource_type: str = "user",
        resource_id: str | None = None,
        patient_id: str | None = None,
        ownership: OwnershipMode | None = None,
        permission: Permission | str | None = None,
    ) -> Principal:
        """
        Run the canonical chain, stopping at the first denial.

        Steps that are not requested are skipped. ``roles`` and
        ``approved_doctor`` may be combined; both are checked. The tenant step
        runs when ``check_tenant`` is set or a ``resource_clinic_id`` is given.

        Raises:
            ValidationError: ``ownership`` was requested without ``patient_id``
        """
        if ownership is not None and patient_id is None:
            raise ValidationError("patient_id is required for an ownership check")

        principal = await self.require_session(principal, ctx)

        if roles is not None:
            await self.require_role(principal, roles, ctx)
        if approved_doctor:
            await self.require_approved_doctor(principal, ctx)

        if check_tenant or resource_clinic_id is not None:
            await self.require_clinic_access(
                principal,
                resource_clinic_id,
                resource_type,
                resource_id or "unknown",
                ctx,
            )

        if ownership is not None:
            if ownership == "self":
                await self.require_patient_self_access(principal, patient_id, ctx)
            elif ownership == "doctor":
                await self.require_doctor_access_to_patient(principal, patient_id, ctx)
            else:
                await self.ensure_ownership_or_doctor(principal, patient_id, ctx)

        if permission is not None:
            await self.require_permission(
                principal, permission, ctx, resource_type=resource_type, resource_id=resource_id
            )

        return principal
