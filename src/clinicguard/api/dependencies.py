"""
FastAPI dependencies and the service container.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinicguard.audit import AuditLogger, Auditor, build_sinks
from clinicguard.config import Settings
from clinicguard.context import request_context_from
from clinicguard.errors import ValidationError
from clinicguard.guards import Guard
from clinicguard.identity import IdentityResolver
from clinicguard.models import Principal, RequestContext
from clinicguard.providers import BaseIdentityProvider, get_identity_provider
from clinicguard.stores import (
    InMemoryRelationshipStore,
    InMemoryResourceRepository,
    InMemoryRoleStore,
    PostgresRelationshipStore,
    PostgresResourceRepository,
    PostgresRoleStore,
    RelationshipStore,
    ResourceRepository,
    RoleStore,
)
from clinicguard.validation import find_spoofed_query_params

logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class GuardServices:
    """Everything a request handler needs, built once per application."""

    provider: BaseIdentityProvider
    role_store: RoleStore
    relationship_store: RelationshipStore
    resources: ResourceRepository
    audit_logger: AuditLogger
    identity_resolver: IdentityResolver
    guard: Guard
    pool: Any = None


def build_services(
    settings: Settings,
    *,
    pool=None,
    provider: BaseIdentityProvider | None = None,
    role_store: RoleStore | None = None,
    relationship_store: RelationshipStore | None = None,
    resources: ResourceRepository | None = None,
    audit_logger: AuditLogger | None = None,
) -> GuardServices:
    """
    Wire stores, audit logger, resolver and guard.

    Explicit arguments win over what the settings would select. With
    ``CLINICGUARD_STORE_BACKEND=postgres`` the stores share ``pool``.
    """
    if settings.app.store_backend == "postgres" and pool is not None:
        role_store = role_store or PostgresRoleStore(pool)
        relationship_store = relationship_store or PostgresRelationshipStore(pool)
        resources = resources or PostgresResourceRepository(pool)
    else:
        role_store = role_store or InMemoryRoleStore()
        relationship_store = relationship_store or InMemoryRelationshipStore()
        resources = resources or InMemoryResourceRepository()

    provider = provider or get_identity_provider(settings)
    audit_logger = audit_logger or AuditLogger.from_settings(
        settings, build_sinks(settings, pool)
    )
    resolver = IdentityResolver(
        provider=provider,
        role_store=role_store,
        audit_logger=audit_logger,
        leeway_seconds=settings.auth.session_leeway_seconds,
    )
    guard = Guard(
        relationship_store=relationship_store,
        subscribers=[Auditor(audit_logger)],
        identity_resolver=resolver,
    )
    logger.info(
        "Guard services built",
        role_store=type(role_store).__name__,
        relationship_store=type(relationship_store).__name__,
        audit_sinks=[type(s).__name__ for s in audit_logger.sinks],
    )
    return GuardServices(
        provider=provider,
        role_store=role_store,
        relationship_store=relationship_store,
        resources=resources,
        audit_logger=audit_logger,
        identity_resolver=resolver,
        guard=guard,
        pool=pool,
    )


def get_services(request: Request) -> GuardServices:
    return request.app.state.services


def get_request_context(request: Request) -> RequestContext:
    """The context built by RequestContextMiddleware, or a fresh one."""
    ctx = getattr(request.state, "context", None)
    if ctx is None:
        ctx = request_context_from(request)
        request.state.context = ctx
    return ctx


def reject_spoofed_query_params(request: Request) -> None:
    """Malformed id parameters in the query string are rejected with 400."""
    spoofed = find_spoofed_query_params(request.query_params)
    if spoofed:
        logger.warning(
            "Suspicious query parameters",
            params=spoofed,
            path=request.url.path,
        )
        raise ValidationError(f"Invalid {spoofed[0]} format in query parameter")


def get_guard(services: GuardServices = Depends(get_services)) -> Guard:
    return services.guard


def get_audit_logger(services: GuardServices = Depends(get_services)) -> AuditLogger:
    return services.audit_logger


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ctx: RequestContext = Depends(get_request_context),
    guard: Guard = Depends(get_guard),
) -> Principal:
    """Resolve the caller from the bearer token. Raises AuthenticationError (401)."""
    token = credentials.credentials if credentials else None
    return await guard.authenticate(token, ctx)
