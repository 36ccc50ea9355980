"""
Guarded API Routes

Every handler builds its guard chain explicitly: session and role first,
then the tenant-scoped fetch, then ownership or relationship and permission.
Nothing is read from a store for a caller whose role is not allowed, and
business logic only runs after the whole chain has passed.
"""

from functools import partial

from fastapi import APIRouter, Depends

from clinicguard.api.dependencies import (
    GuardServices,
    get_audit_logger,
    get_principal,
    get_request_context,
    get_services,
    reject_spoofed_query_params,
)
from clinicguard.audit import AuditLogger
from clinicguard.models import Principal, RequestContext, Resource, Role
from clinicguard.permissions import Permission
from clinicguard.responses import success_response
from clinicguard.tenancy import enforce_tenant_on_resources
from clinicguard.validation import validate_route_id

health_router = APIRouter()
router = APIRouter(dependencies=[Depends(reject_spoofed_query_params)])

CHART_ROLES = (Role.DOCTOR, Role.PATIENT)


def _resource_body(resource: Resource) -> dict:
    # Attributes never override the identifiers
    return {
        **resource.attributes,
        "id": resource.id,
        "patientId": resource.patient_id,
        "doctorId": resource.doctor_id,
    }


@health_router.get("")
async def health(ctx: RequestContext = Depends(get_request_context)):
    """Liveness check."""
    return success_response({"status": "healthy"}, ctx)


@router.get("/admin/metrics")
async def audit_metrics(
    principal: Principal = Depends(get_principal),
    ctx: RequestContext = Depends(get_request_context),
    services: GuardServices = Depends(get_services),
    audit_logger: AuditLogger = Depends(get_audit_logger),
):
    """Audit pipeline counters. Admins only."""
    await services.guard.authorize(
        principal,
        ctx,
        roles=[Role.ADMIN],
        permission=Permission.ADMIN_AUDIT_LOGS,
    )
    return success_response({"audit": audit_logger.metrics()}, ctx)


@router.get("/patients/{patient_id}")
async def get_patient_chart(
    patient_id: str,
    principal: Principal = Depends(get_principal),
    ctx: RequestContext = Depends(get_request_context),
    services: GuardServices = Depends(get_services),
):
    patient_id = validate_route_id(patient_id, "patient_id")
    guard = services.guard
    await guard.require_session(principal, ctx)
    await guard.require_role(principal, CHART_ROLES, ctx)

    patient = await guard.fetch_resource(
        partial(services.resources.find_one, "patient"),
        principal,
        "patient",
        patient_id,
        ctx,
    )
    await guard.authorize(
        principal,
        ctx,
        resource_clinic_id=patient.clinic_id,
        check_tenant=True,
        resource_type="patient",
        resource_id=patient.id,
        patient_id=patient.id,
        ownership="self_or_doctor",
        permission=Permission.PATIENTS_VIEW,
    )

    services.audit_logger.log_patient_chart_access(
        principal.id, principal.clinic_id, patient.id, ctx
    )
    return success_response({"patient": _resource_body(patient)}, ctx)


@router.get("/patients/{patient_id}/files")
async def list_patient_files(
    patient_id: str,
    principal: Principal = Depends(get_principal),
    ctx: RequestContext = Depends(get_request_context),
    services: GuardServices = Depends(get_services),
):
    patient_id = validate_route_id(patient_id, "patient_id")
    guard = services.guard
    await guard.require_session(principal, ctx)
    await guard.require_role(principal, CHART_ROLES, ctx)

    patient = await guard.fetch_resource(
        partial(services.resources.find_one, "patient"),
        principal,
        "patient",
        patient_id,
        ctx,
    )
    await guard.authorize(
        principal,
        ctx,
        resource_clinic_id=patient.clinic_id,
        check_tenant=True,
        resource_type="patient",
        resource_id=patient.id,
        patient_id=patient.id,
        ownership="self_or_doctor",
        permission=Permission.FILES_VIEW,
    )

    files = await services.resources.list_for_patient(
        "file", patient_id=patient.id, clinic_id=principal.clinic_id
    )
    files = enforce_tenant_on_resources(files, principal.clinic_id, ctx)

    services.audit_logger.log_file_list_access(
        principal.id, principal.clinic_id, patient.id, ctx, count=len(files)
    )
    return success_response({"files": [_resource_body(f) for f in files]}, ctx)


@router.get("/files/{file_id}")
async def download_file(
    file_id: str,
    principal: Principal = Depends(get_principal),
    ctx: RequestContext = Depends(get_request_context),
    services: GuardServices = Depends(get_services),
):
    file_id = validate_route_id(file_id, "file_id")
    guard = services.guard
    await guard.require_session(principal, ctx)
    await guard.require_role(principal, CHART_ROLES, ctx)

    file = await guard.fetch_resource(
        partial(services.resources.find_one, "file"),
        principal,
        "file",
        file_id,
        ctx,
    )
    await guard.authorize(
        principal,
        ctx,
        resource_clinic_id=file.clinic_id,
        check_tenant=True,
        resource_type="file",
        resource_id=file.id,
        # A file without an owning patient fails the ownership step
        patient_id=file.patient_id or "",
        ownership="self_or_doctor",
        permission=Permission.FILES_VIEW,
    )

    attrs = file.attributes
    services.audit_logger.log_file_download(
        principal.id,
        principal.clinic_id,
        file.id,
        ctx,
        file_size=attrs.get("size"),
        file_type=attrs.get("content_type"),
        category=attrs.get("category"),
    )
    return success_response({"file": _resource_body(file)}, ctx)


@router.get("/doctor/patients/{patient_id}/notes")
async def list_visit_notes(
    patient_id: str,
    principal: Principal = Depends(get_principal),
    ctx: RequestContext = Depends(get_request_context),
    services: GuardServices = Depends(get_services),
):
    patient_id = validate_route_id(patient_id, "patient_id")
    guard = services.guard
    # Approval is checked before any lookup touches patient data
    await guard.require_session(principal, ctx)
    await guard.require_approved_doctor(principal, ctx)

    patient = await guard.fetch_resource(
        partial(services.resources.find_one, "patient"),
        principal,
        "patient",
        patient_id,
        ctx,
    )
    await guard.authorize(
        principal,
        ctx,
        resource_clinic_id=patient.clinic_id,
        check_tenant=True,
        resource_type="visit_note",
        resource_id=patient.id,
        patient_id=patient.id,
        ownership="doctor",
        permission=Permission.NOTES_VIEW,
    )

    notes = await services.resources.list_for_patient(
        "visit_note", patient_id=patient.id, clinic_id=principal.clinic_id
    )
    notes = enforce_tenant_on_resources(notes, principal.clinic_id, ctx)
    return success_response({"notes": [_resource_body(n) for n in notes]}, ctx)
