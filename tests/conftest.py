"""
Shared fixtures for guard, audit and API tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock

from clinicguard.audit import AuditLogger, Auditor, InMemoryAuditSink
from clinicguard.guards import Guard
from clinicguard.models import (
    AccessDecision,
    Principal,
    PrincipalMetadata,
    RequestContext,
    Role,
)
from clinicguard.stores import InMemoryRelationshipStore


def make_principal(
    role: Role,
    clinic_id: str = "c1",
    user_id: str | None = None,
    doctor_id: str | None = None,
    patient_id: str | None = None,
    approved: bool = False,
) -> Principal:
    return Principal(
        id=user_id or f"user-{role.value}",
        email=f"{role.value}@example.test",
        role=role,
        clinic_id=clinic_id,
        email_verified=True,
        metadata=PrincipalMetadata(doctor_id=doctor_id, patient_id=patient_id, approved=approved),
        session_expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


class AcquireContext:
    """Stands in for the context manager returned by ``pool.acquire()``."""

    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return None


def make_pool(conn) -> MagicMock:
    pool = MagicMock()
    pool.acquire = lambda: AcquireContext(conn)
    return pool


class DecisionRecorder:
    """Subscriber that keeps every published decision."""

    def __init__(self):
        self.decisions: list[AccessDecision] = []

    def __call__(self, decision, principal, ctx):
        self.decisions.append(decision)

    @property
    def denials(self) -> list[AccessDecision]:
        return [d for d in self.decisions if not d.allowed]


@pytest.fixture
def ctx():
    return RequestContext(
        request_id="req-123",
        ip="10.0.0.1",
        user_agent="pytest",
        path="/api/v1/test",
        method="GET",
    )


@pytest.fixture
def doctor():
    return make_principal(Role.DOCTOR, user_id="user-d1", doctor_id="d1", approved=True)


@pytest.fixture
def pending_doctor():
    return make_principal(Role.DOCTOR, user_id="user-d2", doctor_id="d2", approved=False)


@pytest.fixture
def patient():
    return make_principal(Role.PATIENT, user_id="user-p1", patient_id="p1")


@pytest.fixture
def admin():
    return make_principal(Role.ADMIN, user_id="user-a1")


@pytest.fixture
def relationships():
    store = InMemoryRelationshipStore()
    store.link("d1", "p1", "c1", source="appointment")
    return store


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def audit_logger(audit_sink):
    return AuditLogger([audit_sink], queue_size=100, sink_timeout_seconds=0.5)


@pytest.fixture
def recorder():
    return DecisionRecorder()


@pytest.fixture
def guard(relationships, audit_logger, recorder):
    return Guard(relationships, subscribers=[recorder, Auditor(audit_logger)])
