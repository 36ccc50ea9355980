"""
HTTP surface for the guard layer.
"""

from clinicguard.api.app import create_app
from clinicguard.api.dependencies import (
    GuardServices,
    build_services,
    get_audit_logger,
    get_guard,
    get_principal,
    get_request_context,
)

__all__ = [
    "create_app",
    "GuardServices",
    "build_services",
    "get_audit_logger",
    "get_guard",
    "get_principal",
    "get_request_context",
]
