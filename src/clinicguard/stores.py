"""
Guard Stores

Role records, doctor-patient relationships and tenant-scoped resources.
Each store has an in-memory implementation for development and tests and an
asyncpg implementation sharing one connection pool.
"""

import json
from typing import Any, Protocol

import asyncpg
import structlog
from pydantic import BaseModel, ConfigDict

from clinicguard.config import Settings
from clinicguard.models import Resource, Role

logger = structlog.get_logger(__name__)


RELATIONSHIP_SOURCES = (
    "appointment",
    "consultation",
    "lab_order",
    "visit_note",
    "message_thread",
    "assignment",
)


class RoleRecord(BaseModel):
    """Authoritative role and clinic assignment for a user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role
    clinic_id: str | None = None
    doctor_id: str | None = None
    patient_id: str | None = None
    approved: bool = False


class RoleStore(Protocol):
    async def get_role_record(self, user_id: str) -> RoleRecord | None: ...


class RelationshipStore(Protocol):
    async def has_relationship(self, doctor_id: str, patient_id: str, clinic_id: str) -> bool: ...


class ResourceRepository(Protocol):
    async def find_one(self, resource_type: str, *, id: str, clinic_id: str) -> Resource | None: ...

    async def list_for_patient(
        self, resource_type: str, *, patient_id: str, clinic_id: str
    ) -> list[Resource]: ...


# =============================================================================
# In-memory implementations
# =============================================================================

class InMemoryRoleStore:
    """In-memory role storage for development."""

    def __init__(self, records: list[RoleRecord] | None = None):
        self._records: dict[str, RoleRecord] = {}
        for record in records or []:
            self.save(record)

    def save(self, record: RoleRecord) -> None:
        self._records[record.user_id] = record

    async def get_role_record(self, user_id: str) -> RoleRecord | None:
        return self._records.get(user_id)


class InMemoryRelationshipStore:
    """In-memory doctor-patient links, keyed by clinic."""

    def __init__(self):
        self._links: dict[tuple[str, str, str], set[str]] = {}

    def link(
        self,
        doctor_id: str,
        patient_id: str,
        clinic_id: str,
        source: str = "appointment",
    ) -> None:
        if source not in RELATIONSHIP_SOURCES:
            raise ValueError(f"Unknown relationship source: {source}")
        self._links.setdefault((clinic_id, doctor_id, patient_id), set()).add(source)

    async def has_relationship(self, doctor_id: str, patient_id: str, clinic_id: str) -> bool:
        return bool(self._links.get((clinic_id, doctor_id, patient_id)))


class InMemoryResourceRepository:
    """In-memory resources. Lookups are always filtered by clinic."""

    def __init__(self, resources: list[Resource] | None = None):
        self._resources: dict[tuple[str, str], Resource] = {}
        for resource in resources or []:
            self.add(resource)

    def add(self, resource: Resource) -> None:
        self._resources[(resource.resource_type, resource.id)] = resource

    async def find_one(self, resource_type: str, *, id: str, clinic_id: str) -> Resource | None:
        resource = self._resources.get((resource_type, id))
        if resource is None or resource.clinic_id != clinic_id:
            return None
        return resource

    async def list_for_patient(
        self, resource_type: str, *, patient_id: str, clinic_id: str
    ) -> list[Resource]:
        return [
            r for (rtype, _), r in self._resources.items()
            if rtype == resource_type and r.patient_id == patient_id and r.clinic_id == clinic_id
        ]


# =============================================================================
# PostgreSQL implementations
# =============================================================================

async def create_pool(settings: Settings) -> asyncpg.Pool:
    """Create the shared asyncpg pool."""
    pool = await asyncpg.create_pool(
        host=settings.postgres.host,
        port=settings.postgres.port,
        user=settings.postgres.user,
        password=settings.postgres.password.get_secret_value(),
        database=settings.postgres.database,
        min_size=settings.postgres.min_pool_size,
        max_size=settings.postgres.max_pool_size,
    )
    logger.info(
        "PostgreSQL pool created",
        host=settings.postgres.host,
        database=settings.postgres.database,
    )
    return pool


class PostgresRoleStore:
    """
    Role records backed by PostgreSQL.

    Usage:
        store = PostgresRoleStore(pool)
        record = await store.get_role_record("user-123")
    """

    def __init__(self, pool):
        self.pool = pool

    async def get_role_record(self, user_id: str) -> RoleRecord | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, role, clinic_id, doctor_id, patient_id, approved
                FROM user_roles
                WHERE user_id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        data = dict(row)
        data["approved"] = bool(data.get("approved"))
        return RoleRecord(**data)


class PostgresRelationshipStore:
    """
    Doctor-patient relationships derived from clinical records.

    A link exists when the doctor and patient share an appointment,
    consultation, lab order, visit note, message thread or an explicit
    assignment inside the same clinic.
    """

    _TABLES = (
        "appointments",
        "consultations",
        "lab_orders",
        "visit_notes",
        "message_threads",
        "patient_assignments",
    )

    def __init__(self, pool):
        self.pool = pool
        self._query = "SELECT " + " OR ".join(
            f"EXISTS (SELECT 1 FROM {table} "
            f"WHERE doctor_id = $1 AND patient_id = $2 AND clinic_id = $3)"
            for table in self._TABLES
        )

    async def has_relationship(self, doctor_id: str, patient_id: str, clinic_id: str) -> bool:
        async with self.pool.acquire() as conn:
            found = await conn.fetchval(self._query, doctor_id, patient_id, clinic_id)
        return bool(found)


class PostgresResourceRepository:
    """Tenant-scoped resource lookups."""

    def __init__(self, pool):
        self.pool = pool

    async def find_one(self, resource_type: str, *, id: str, clinic_id: str) -> Resource | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, resource_type, clinic_id, patient_id, doctor_id, attributes
                FROM resources
                WHERE resource_type = $1 AND id = $2 AND clinic_id = $3
                """,
                resource_type,
                id,
                clinic_id,
            )
        if row is None:
            return None
        return self._to_resource(row)

    async def list_for_patient(
        self, resource_type: str, *, patient_id: str, clinic_id: str
    ) -> list[Resource]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, resource_type, clinic_id, patient_id, doctor_id, attributes
                FROM resources
                WHERE resource_type = $1 AND patient_id = $2 AND clinic_id = $3
                ORDER BY id
                """,
                resource_type,
                patient_id,
                clinic_id,
            )
        return [self._to_resource(row) for row in rows]

    @staticmethod
    def _to_resource(row) -> Resource:
        data: dict[str, Any] = dict(row)
        attributes = data.get("attributes") or {}
        if isinstance(attributes, str):
            attributes = json.loads(attributes)
        data["attributes"] = attributes
        return Resource(**data)
