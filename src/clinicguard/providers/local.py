"""
Local JWT Provider

Shared-secret (HS256) tokens for development, tests and single-node
deployments.
"""

from datetime import datetime, timedelta, timezone

import structlog
from jose import jwt, JWTError

from clinicguard.errors import AuthenticationError
from clinicguard.providers.base import BaseIdentityProvider, VerifiedIdentity

logger = structlog.get_logger(__name__)


class LocalJWTProvider(BaseIdentityProvider):
    """Verifies tokens signed with a shared secret."""

    name = "local"

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 30,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    async def verify_credential(self, credential: str) -> VerifiedIdentity:
        try:
            # Expiry is re-checked by the resolver against its own clock
            claims = jwt.decode(
                credential,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as e:
            logger.warning("Token verification failed", provider=self.name, error=str(e))
            raise AuthenticationError(reason="provider_rejected")

        if not claims.get("sub"):
            raise AuthenticationError(reason="provider_rejected")

        return self.claims_to_identity(claims)

    def issue_token(
        self,
        subject: str,
        email: str = "",
        email_verified: bool = True,
        expires_delta: timedelta | None = None,
        now: datetime | None = None,
    ) -> str:
        """Create a signed access token."""
        issued = now or datetime.now(timezone.utc)
        expire = issued + (expires_delta or timedelta(minutes=self.expire_minutes))
        claims = {
            "sub": subject,
            "email": email,
            "email_verified": email_verified,
            "iat": int(issued.timestamp()),
            "exp": int(expire.timestamp()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)
