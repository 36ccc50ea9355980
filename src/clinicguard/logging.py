"""
Structured logging setup.

structlog on top of the stdlib logging module, rendering JSON lines. A
scrubbing processor redacts fields whose names are known to carry PHI before
anything is rendered.
"""

import logging
import sys

import structlog

from clinicguard.config import Settings


# Name of the channel used for audit pipeline failures
AUDIT_DIAGNOSTICS_LOGGER = "clinicguard.audit.diagnostics"

REDACTED = "[REDACTED]"

PHI_KEYS = frozenset({
    "diagnosis",
    "diagnoses",
    "notes",
    "note",
    "transcript",
    "symptoms",
    "medications",
    "prescription",
    "allergies",
    "ssn",
    "dob",
    "date_of_birth",
    "dateofbirth",
    "address",
    "phone",
    "insurance",
    "lab_results",
    "labresults",
    "chief_complaint",
    "chiefcomplaint",
    "password",
    "token",
    "authorization",
})


def _scrub(value):
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in PHI_KEYS else _scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    return value


def phi_scrubbing_processor(logger, method_name, event_dict):
    """Redact PHI-bearing keys, including inside nested dicts and lists."""
    for key in list(event_dict.keys()):
        if key.lower() in PHI_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _scrub(event_dict[key])
    return event_dict


def configure_logging(settings: Settings) -> None:
    """Configure stdlib logging and structlog for the process."""
    level = getattr(logging, settings.app.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.app.json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            phi_scrubbing_processor,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
