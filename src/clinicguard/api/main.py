"""
ClinicGuard API entry point.

    uvicorn clinicguard.api.main:app
"""

from clinicguard.api.app import create_app
from clinicguard.config import get_settings
from clinicguard.logging import configure_logging

settings = get_settings()
configure_logging(settings)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clinicguard.api.main:app",
        host=settings.app.api_host,
        port=settings.app.api_port,
    )
