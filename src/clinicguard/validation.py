"""
Route Parameter Validation

Identifiers taken from the path or query string are checked for shape before
any guard or store sees them. UUIDs and CUIDs both fit the accepted pattern.
"""

import re
from typing import Iterable, Mapping

from clinicguard.errors import ValidationError

ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")

# Id parameters that must never ride in on a query string unchecked
SENSITIVE_QUERY_PARAMS = (
    "patientId",
    "doctorId",
    "userId",
    "appointmentId",
    "consultationId",
    "fileId",
    "noteId",
    "formId",
)


def is_valid_id(value: object) -> bool:
    return isinstance(value, str) and ID_PATTERN.fullmatch(value) is not None


def validate_route_id(value: str | None, param_name: str = "id") -> str:
    """
    Return the id unchanged or raise ValidationError (400).

    Raises:
        ValidationError: missing or malformed id
    """
    if not value:
        raise ValidationError(f"Missing {param_name}")
    if not is_valid_id(value):
        raise ValidationError(f"Invalid {param_name} format")
    return value


def validate_route_ids(ids: Mapping[str, str | None]) -> dict[str, str]:
    """Validate several ids; the first violation is reported."""
    return {name: validate_route_id(value, name) for name, value in ids.items()}


def find_spoofed_query_params(
    query_params: Mapping[str, str],
    allowed: Iterable[str] = (),
) -> list[str]:
    """Sensitive id parameters present in the query string with a malformed value."""
    allowed_params = set(allowed)
    return [
        name
        for name in SENSITIVE_QUERY_PARAMS
        if name not in allowed_params
        and query_params.get(name)
        and not is_valid_id(query_params[name])
    ]
