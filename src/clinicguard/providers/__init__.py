"""
Identity provider implementations and factory.
"""

import structlog

from clinicguard.config import Settings
from clinicguard.providers.base import BaseIdentityProvider, VerifiedIdentity
from clinicguard.providers.local import LocalJWTProvider
from clinicguard.providers.oidc import OIDCProvider

logger = structlog.get_logger(__name__)


def get_identity_provider(settings: Settings) -> BaseIdentityProvider:
    """Build the provider selected by ``AUTH_PROVIDER``."""
    auth = settings.auth

    if auth.provider == "oidc":
        if not auth.oidc_issuer or not auth.oidc_client_id:
            raise ValueError("OIDC provider requires AUTH_OIDC_ISSUER and AUTH_OIDC_CLIENT_ID")
        provider: BaseIdentityProvider = OIDCProvider(
            issuer_url=auth.oidc_issuer,
            client_id=auth.oidc_client_id,
            jwks_url=auth.jwks_url,
        )
    else:
        provider = LocalJWTProvider(
            secret_key=auth.jwt_secret_key.get_secret_value(),
            algorithm=auth.jwt_algorithm,
            expire_minutes=auth.jwt_access_token_expire_minutes,
        )

    logger.info("Identity provider selected", provider=provider.name)
    return provider


__all__ = [
    "BaseIdentityProvider",
    "VerifiedIdentity",
    "LocalJWTProvider",
    "OIDCProvider",
    "get_identity_provider",
]
