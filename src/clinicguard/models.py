"""
Guard Domain Models

Core models for identity, tenancy, request context and audit entries.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from clinicguard.errors import GuardError


AuditValue = str | int | float | bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Closed set of platform roles."""
    DOCTOR = "doctor"
    PATIENT = "patient"
    ADMIN = "admin"


class PrincipalMetadata(BaseModel):
    """Role-specific pointers loaded from the role store."""

    model_config = ConfigDict(frozen=True)

    doctor_id: str | None = None
    patient_id: str | None = None
    approved: bool = False


class Principal(BaseModel):
    """
    Resolved identity for a single request.

    Built once by the identity resolver and never persisted. The model is
    frozen, so no guard can change the clinic assignment mid-request.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identity provider subject")
    email: str = ""
    role: Role
    clinic_id: str = Field(..., description="Tenant the principal belongs to")
    email_verified: bool = False
    metadata: PrincipalMetadata = Field(default_factory=PrincipalMetadata)
    session_expires_at: datetime | None = None


class Resource(BaseModel):
    """
    Any entity under authorization: chart, appointment, file, form, thread.

    The clinic is assigned at creation and never changes.
    """

    model_config = ConfigDict(frozen=True)

    resource_type: str
    id: str = Field(default_factory=lambda: str(uuid4()))
    clinic_id: str | None
    patient_id: str | None = None
    doctor_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class RequestContext(BaseModel):
    """
    Per-request context threaded through every guard and the audit logger.

    One request produces one correlation id shared by all of its audit entries.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid4()))
    ip: str = "unknown"
    user_agent: str = "unknown"
    path: str | None = None
    method: str | None = None


class AuditLogEntry(BaseModel):
    """
    Append-only audit record.

    Only identifiers and allow-listed primitive metadata, never PHI.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    clinic_id: str
    action: str
    resource_type: str
    resource_id: str
    ip: str = "unknown"
    user_agent: str | None = None
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    success: bool = True
    metadata: dict[str, AuditValue] = Field(default_factory=dict)

    def to_log_dict(self) -> dict:
        """Flatten for structured logging."""
        return {
            "audit_id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "clinic_id": self.clinic_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "ip": self.ip,
            "request_id": self.request_id,
            "success": self.success,
            **self.metadata,
        }


@dataclass(frozen=True)
class AccessDecision:
    """Result of a single authorization step."""
    allowed: bool
    guard: str
    action: str
    reason: str
    resource_type: str = "user"
    resource_id: str | None = None
    error: type[GuardError] | None = None
    details: dict[str, AuditValue] = field(default_factory=dict)

    def raise_for_denial(self) -> None:
        if not self.allowed:
            error_cls = self.error or GuardError
            raise error_cls(reason=self.reason, guard=self.guard)
