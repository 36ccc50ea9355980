"""
PHI-Safe Audit Logging

Audit trail for authentication, authorization decisions and PHI access.

- Metadata is built by allow-list: only known keys with primitive values
- Entries are queued and written by background workers, so logging never
  blocks or fails a request
- The queue is bounded; when full the oldest entry is dropped and counted
- Sink failures and timeouts go to a diagnostics logger, never to the caller
"""

import asyncio
import json
import math
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol

import structlog

from clinicguard.config import Settings
from clinicguard.logging import AUDIT_DIAGNOSTICS_LOGGER
from clinicguard.models import (
    AccessDecision,
    AuditLogEntry,
    AuditValue,
    Principal,
    RequestContext,
)

logger = structlog.get_logger(__name__)
diagnostics = structlog.get_logger(AUDIT_DIAGNOSTICS_LOGGER)


class AuditAction(str, Enum):
    """Audit action names."""

    # Authentication
    AUTH_SUCCESS = "AUTH_SUCCESS"
    AUTH_FAILED = "AUTH_FAILED"

    # Authorization denials
    ACCESS_DENIED = "ACCESS_DENIED"
    DOCTOR_APPROVAL_PENDING = "DOCTOR_APPROVAL_PENDING"
    CLINIC_ACCESS_DENIED = "CLINIC_ACCESS_DENIED"
    TENANT_ISOLATION_VIOLATION = "TENANT_ISOLATION_VIOLATION"
    OWNERSHIP_DENIED = "OWNERSHIP_DENIED"
    DOCTOR_PATIENT_RELATIONSHIP_NOT_FOUND = "DOCTOR_PATIENT_RELATIONSHIP_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Grants worth recording
    PHI_ACCESS_GRANTED = "PHI_ACCESS_GRANTED"

    # PHI access
    VIEW_PATIENT_CHART = "VIEW_PATIENT_CHART"
    VIEW_CONSULTATION = "VIEW_CONSULTATION"
    DOWNLOAD_FILE = "DOWNLOAD_FILE"
    LIST_PATIENT_FILES = "LIST_PATIENT_FILES"
    GENERATE_SOAP_NOTE = "GENERATE_SOAP_NOTE"
    ACCESS_VISIT_TRANSCRIPT = "ACCESS_VISIT_TRANSCRIPT"


SAFE_METADATA_KEYS = frozenset({
    "fileSize",
    "fileType",
    "category",
    "duration",
    "method",
    "statusCode",
    "count",
    "model",
    "version",
    # Guard denial reasons
    "reason",
    "requiredRole",
    "userRole",
    "guard",
})


def sanitize_metadata(
    metadata: Mapping[str, Any] | None,
    allowed_keys: Iterable[str] = SAFE_METADATA_KEYS,
) -> dict[str, AuditValue]:
    """
    Keep only allow-listed keys whose values are primitives.

    Nested objects, lists, None and non-finite floats are dropped; unknown
    keys are dropped regardless of value.
    """
    if not metadata:
        return {}

    allowed = frozenset(allowed_keys)
    sanitized: dict[str, AuditValue] = {}
    for key, value in metadata.items():
        if key not in allowed:
            continue
        if isinstance(value, (str, bool, int)):
            sanitized[key] = value
        elif isinstance(value, float) and math.isfinite(value):
            sanitized[key] = value
    return sanitized


# =============================================================================
# Sinks
# =============================================================================

class AuditSink(Protocol):
    async def write(self, entry: AuditLogEntry) -> None: ...


class InMemoryAuditSink:
    """Keeps entries in a list. Used in development and tests."""

    def __init__(self):
        self.entries: list[AuditLogEntry] = []

    async def write(self, entry: AuditLogEntry) -> None:
        self.entries.append(entry)

    def query(
        self,
        user_id: str | None = None,
        clinic_id: str | None = None,
        action: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        request_id: str | None = None,
        success: bool | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Filter stored entries, newest first."""
        results = []
        for entry in reversed(self.entries):
            if user_id is not None and entry.user_id != user_id:
                continue
            if clinic_id is not None and entry.clinic_id != clinic_id:
                continue
            if action is not None and entry.action != action:
                continue
            if resource_type is not None and entry.resource_type != resource_type:
                continue
            if resource_id is not None and entry.resource_id != resource_id:
                continue
            if request_id is not None and entry.request_id != request_id:
                continue
            if success is not None and entry.success != success:
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results


class StructlogAuditSink:
    """Writes entries as structured log lines."""

    def __init__(self, logger_name: str = "clinicguard.audit.trail"):
        self._logger = structlog.get_logger(logger_name)

    async def write(self, entry: AuditLogEntry) -> None:
        self._logger.info("audit_event", **entry.to_log_dict())


class PostgresAuditSink:
    """Appends entries to the ``audit_log`` table."""

    def __init__(self, pool):
        self.pool = pool

    async def write(self, entry: AuditLogEntry) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO audit_log (
                    id, timestamp, user_id, clinic_id, action,
                    resource_type, resource_id, ip, user_agent,
                    request_id, success, metadata
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                entry.id,
                entry.timestamp,
                entry.user_id,
                entry.clinic_id,
                entry.action,
                entry.resource_type,
                entry.resource_id,
                entry.ip,
                entry.user_agent,
                entry.request_id,
                entry.success,
                json.dumps(entry.metadata),
            )


# =============================================================================
# Audit Logger
# =============================================================================

class AuditLogger:
    """
    Non-blocking audit logger.

    ``log_access`` sanitizes and enqueues; worker tasks started by ``start()``
    write each entry to every sink under a timeout. ``stop()`` drains whatever
    is still queued before returning.

    Usage:
        audit = AuditLogger([InMemoryAuditSink()])
        await audit.start()
        audit.log_access(user_id="u1", clinic_id="c1", action="VIEW_PATIENT_CHART",
                         resource_type="patient", resource_id="p1", ctx=ctx)
        await audit.stop()
    """

    def __init__(
        self,
        sinks: list[AuditSink] | None = None,
        queue_size: int = 10_000,
        workers: int = 1,
        sink_timeout_seconds: float = 2.0,
        drain_timeout_seconds: float = 5.0,
        extra_allowed_keys: Iterable[str] = (),
    ):
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.sinks: list[AuditSink] = list(sinks or [])
        self.sink_timeout_seconds = sink_timeout_seconds
        self.drain_timeout_seconds = drain_timeout_seconds
        self.allowed_keys = SAFE_METADATA_KEYS | frozenset(extra_allowed_keys)
        self._queue: asyncio.Queue[AuditLogEntry] = asyncio.Queue(maxsize=queue_size)
        self._worker_count = max(1, workers)
        self._workers: list[asyncio.Task] = []

        self.dropped_count = 0
        self.failed_count = 0
        self.written_count = 0

    @classmethod
    def from_settings(cls, settings: Settings, sinks: list[AuditSink]) -> "AuditLogger":
        audit = settings.audit
        return cls(
            sinks=sinks,
            queue_size=audit.queue_size,
            workers=audit.workers,
            sink_timeout_seconds=audit.sink_timeout_seconds,
            drain_timeout_seconds=audit.drain_timeout_seconds,
            extra_allowed_keys=audit.extra_allowed_keys,
        )

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def metrics(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "written": self.written_count,
            "dropped": self.dropped_count,
            "failed": self.failed_count,
        }

    async def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"audit-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("Audit workers started", workers=self._worker_count)

    async def stop(self) -> None:
        """Drain the queue, then stop the workers."""
        if not self.running and not self._queue.empty():
            await self.start()
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.drain_timeout_seconds)
        except asyncio.TimeoutError:
            diagnostics.error("Audit drain timed out", pending=self.pending)
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Audit workers stopped", **self.metrics())

    async def flush(self) -> None:
        """Wait until every queued entry has been processed."""
        if not self.running:
            await self.start()
        await self._queue.join()

    def log_access(
        self,
        user_id: str,
        clinic_id: str,
        action: str | AuditAction,
        resource_type: str,
        resource_id: str,
        ctx: RequestContext | None = None,
        success: bool = True,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record an access event. Never raises and never waits."""
        try:
            entry = AuditLogEntry(
                user_id=user_id,
                clinic_id=clinic_id,
                action=action.value if isinstance(action, AuditAction) else action,
                resource_type=resource_type,
                resource_id=resource_id,
                ip=ctx.ip if ctx else "unknown",
                user_agent=ctx.user_agent if ctx else None,
                request_id=ctx.request_id if ctx else None,
                success=success,
                metadata=sanitize_metadata(metadata, self.allowed_keys),
            )
            self._enqueue(entry)
        except Exception as e:
            self.failed_count += 1
            diagnostics.error("Failed to record audit entry", action=str(action), error=str(e))

    def _enqueue(self, entry: AuditLogEntry) -> None:
        while True:
            try:
                self._queue.put_nowait(entry)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                except asyncio.QueueEmpty:
                    continue
                self.dropped_count += 1
                diagnostics.warning("Audit queue full, dropped oldest entry", dropped=self.dropped_count)

    async def _worker(self, index: int) -> None:
        while True:
            entry = await self._queue.get()
            try:
                await self._write(entry)
            finally:
                self._queue.task_done()

    async def _write(self, entry: AuditLogEntry) -> None:
        for sink in self.sinks:
            sink_name = type(sink).__name__
            try:
                await asyncio.wait_for(sink.write(entry), timeout=self.sink_timeout_seconds)
                self.written_count += 1
            except asyncio.TimeoutError:
                self.failed_count += 1
                diagnostics.error(
                    "Audit sink timed out",
                    sink=sink_name,
                    audit_id=entry.id,
                    request_id=entry.request_id,
                )
            except Exception as e:
                self.failed_count += 1
                diagnostics.error(
                    "Audit sink failed",
                    sink=sink_name,
                    audit_id=entry.id,
                    request_id=entry.request_id,
                    error=str(e),
                )

    # =========================================================================
    # Convenience Methods
    # =========================================================================

    def log_patient_chart_access(
        self,
        user_id: str,
        clinic_id: str,
        patient_id: str,
        ctx: RequestContext | None = None,
    ) -> None:
        self.log_access(
            user_id, clinic_id, AuditAction.VIEW_PATIENT_CHART, "patient", patient_id, ctx
        )

    def log_consultation_access(
        self,
        user_id: str,
        clinic_id: str,
        consultation_id: str,
        ctx: RequestContext | None = None,
    ) -> None:
        self.log_access(
            user_id, clinic_id, AuditAction.VIEW_CONSULTATION, "consultation", consultation_id, ctx
        )

    def log_file_download(
        self,
        user_id: str,
        clinic_id: str,
        file_id: str,
        ctx: RequestContext | None = None,
        file_size: int | None = None,
        file_type: str | None = None,
        category: str | None = None,
    ) -> None:
        self.log_access(
            user_id,
            clinic_id,
            AuditAction.DOWNLOAD_FILE,
            "file",
            file_id,
            ctx,
            metadata={"fileSize": file_size, "fileType": file_type, "category": category},
        )

    def log_file_list_access(
        self,
        user_id: str,
        clinic_id: str,
        patient_id: str,
        ctx: RequestContext | None = None,
        count: int | None = None,
    ) -> None:
        """Listing is recorded against the patient whose files were listed."""
        self.log_access(
            user_id,
            clinic_id,
            AuditAction.LIST_PATIENT_FILES,
            "file",
            patient_id,
            ctx,
            metadata={"count": count},
        )

    def log_soap_note_generation(
        self,
        user_id: str,
        clinic_id: str,
        visit_note_id: str,
        ctx: RequestContext | None = None,
        model: str | None = None,
    ) -> None:
        self.log_access(
            user_id,
            clinic_id,
            AuditAction.GENERATE_SOAP_NOTE,
            "visit_note",
            visit_note_id,
            ctx,
            metadata={"model": model},
        )

    def log_transcript_access(
        self,
        user_id: str,
        clinic_id: str,
        consultation_id: str,
        ctx: RequestContext | None = None,
    ) -> None:
        self.log_access(
            user_id,
            clinic_id,
            AuditAction.ACCESS_VISIT_TRANSCRIPT,
            "consultation",
            consultation_id,
            ctx,
        )


def build_sinks(settings: Settings, pool=None) -> list[AuditSink]:
    """Sinks selected by ``AUDIT_SINK``."""
    kind = settings.audit.sink
    if kind == "postgres":
        if pool is None:
            raise ValueError("Postgres audit sink requires a connection pool")
        return [PostgresAuditSink(pool)]
    if kind == "memory":
        return [InMemoryAuditSink()]
    return [StructlogAuditSink()]


# =============================================================================
# Decision subscriber
# =============================================================================

ANONYMOUS_USER = "anonymous"
UNKNOWN_CLINIC = "unknown"


class Auditor:
    """
    Turns access decisions into audit entries.

    Every denial is recorded. Grants are recorded only for actions listed in
    ``recorded_grants``.
    """

    def __init__(
        self,
        audit_logger: AuditLogger,
        recorded_grants: Iterable[str] = (AuditAction.PHI_ACCESS_GRANTED.value,),
    ):
        self.audit_logger = audit_logger
        self.recorded_grants = frozenset(recorded_grants)

    def __call__(
        self,
        decision: AccessDecision,
        principal: Principal | None,
        ctx: RequestContext,
    ) -> None:
        if decision.allowed and decision.action not in self.recorded_grants:
            return

        metadata: dict[str, Any] = {"guard": decision.guard, "reason": decision.reason}
        if principal is not None:
            metadata["userRole"] = principal.role.value
        metadata.update(decision.details)

        self.audit_logger.log_access(
            user_id=principal.id if principal else ANONYMOUS_USER,
            clinic_id=principal.clinic_id if principal else UNKNOWN_CLINIC,
            action=decision.action,
            resource_type=decision.resource_type,
            resource_id=decision.resource_id or (principal.id if principal else ANONYMOUS_USER),
            ctx=ctx,
            success=decision.allowed,
            metadata=metadata,
        )
