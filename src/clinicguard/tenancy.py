"""
Tenant Isolation

Clinic scoping for every read and write. Lookups are filtered by the
principal's clinic before the fetch and the fetched object is checked again
afterwards.

A resource in another clinic is reported exactly like a missing one.
"""

from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar

import structlog

from clinicguard.errors import NotFoundError, TenantMismatchError
from clinicguard.models import Principal, RequestContext

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _clinic_of(obj: Any) -> str | None:
    if isinstance(obj, Mapping):
        return obj.get("clinic_id")
    return getattr(obj, "clinic_id", None)


def is_same_tenant(resource_clinic_id: str | None, principal_clinic_id: str | None) -> bool:
    """Both clinics present and equal. Nothing else counts as a match."""
    return bool(resource_clinic_id) and bool(principal_clinic_id) and (
        resource_clinic_id == principal_clinic_id
    )


def enforce_tenant(
    resource_clinic_id: str | None,
    principal_clinic_id: str,
    ctx: RequestContext | None = None,
) -> None:
    """
    Raise TenantMismatchError unless the resource belongs to the principal's clinic.

    A resource without a clinic is treated as a mismatch.
    """
    if is_same_tenant(resource_clinic_id, principal_clinic_id):
        return
    reason = "resource_has_no_clinic" if not resource_clinic_id else "clinic_mismatch"
    logger.warning(
        "Tenant isolation check failed",
        reason=reason,
        request_id=ctx.request_id if ctx else None,
    )
    raise TenantMismatchError(reason=reason)


def tenant_scope(principal: Principal, **filters: Any) -> dict[str, Any]:
    """Query filters with ``clinic_id`` forced to the principal's clinic."""
    scoped = dict(filters)
    scoped["clinic_id"] = principal.clinic_id
    return scoped


def with_tenant_create_data(principal: Principal, data: Mapping[str, Any]) -> dict[str, Any]:
    """Stamp the principal's clinic on data for a new record."""
    stamped = dict(data)
    stamped["clinic_id"] = principal.clinic_id
    return stamped


async def fetch_with_tenant(
    fetch: Callable[..., Awaitable[T | None]],
    principal: Principal,
    resource_type: str,
    resource_id: str,
    ctx: RequestContext | None = None,
) -> T:
    """
    Fetch one resource scoped to the principal's clinic.

    Args:
        fetch: called as ``fetch(id=..., clinic_id=...)``
        principal: the caller
        resource_type: used in log events only
        resource_id: id to look up
        ctx: request context

    Raises:
        NotFoundError: nothing matched the scoped lookup
        TenantMismatchError: the fetch returned another clinic's object
    """
    resource = await fetch(**tenant_scope(principal, id=resource_id))
    if resource is None:
        raise NotFoundError(resource_type=resource_type)

    # Post-fetch check guards against a fetch that ignored the filter
    if not is_same_tenant(_clinic_of(resource), principal.clinic_id):
        logger.error(
            "Scoped fetch returned foreign resource",
            resource_type=resource_type,
            resource_id=resource_id,
            request_id=ctx.request_id if ctx else None,
        )
        raise TenantMismatchError(reason="post_fetch_mismatch", resource_type=resource_type)
    return resource


def enforce_tenant_on_resources(
    resources: Iterable[T],
    clinic_id: str,
    ctx: RequestContext | None = None,
) -> list[T]:
    """Check every resource in a batch. One mismatch fails the whole batch."""
    checked = list(resources)
    for resource in checked:
        enforce_tenant(_clinic_of(resource), clinic_id, ctx)
    return checked


def verify_nested_tenant(
    parent_clinic_id: str | None,
    child_clinic_id: str | None,
    ctx: RequestContext | None = None,
) -> None:
    """A child record must live in the same clinic as its parent."""
    if parent_clinic_id is None or child_clinic_id is None:
        raise TenantMismatchError(reason="nested_clinic_missing")
    enforce_tenant(child_clinic_id, parent_clinic_id, ctx)
