"""
OIDC Provider

Verifies RS256 tokens issued by an external OpenID Connect provider
against its published JWKS.
"""

from typing import Any

import httpx
import structlog
from jose import jwt, JWTError

from clinicguard.errors import AuthenticationError
from clinicguard.providers.base import BaseIdentityProvider, VerifiedIdentity

logger = structlog.get_logger(__name__)


class OIDCProvider(BaseIdentityProvider):
    """
    Generic OIDC provider.

    Configuration:
        issuer_url: token issuer (``iss`` claim)
        client_id: expected audience
        jwks_url: key set location, defaults to the issuer's well-known path
    """

    name = "oidc"

    def __init__(
        self,
        issuer_url: str,
        client_id: str,
        jwks_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.issuer_url = issuer_url.rstrip("/")
        self.client_id = client_id
        self.jwks_url = jwks_url or f"{self.issuer_url}/.well-known/jwks.json"
        self._http_client = http_client
        self._jwks: dict[str, Any] | None = None

    async def initialize(self) -> None:
        """Fetch the JWKS."""
        try:
            if self._http_client is not None:
                response = await self._http_client.get(self.jwks_url)
            else:
                async with httpx.AsyncClient(timeout=5.0) as client:
                    response = await client.get(self.jwks_url)
            response.raise_for_status()
            self._jwks = response.json()
            logger.info("OIDC provider initialized", issuer=self.issuer_url)
        except httpx.HTTPError as e:
            logger.error("Failed to fetch JWKS", jwks_url=self.jwks_url, error=str(e))
            raise

    def _find_key(self, kid: str | None) -> dict[str, Any] | None:
        for key in (self._jwks or {}).get("keys", []):
            if key.get("kid") == kid:
                return key
        return None

    async def verify_credential(self, credential: str) -> VerifiedIdentity:
        if self._jwks is None:
            try:
                await self.initialize()
            except httpx.HTTPError:
                raise AuthenticationError(reason="provider_unavailable")

        try:
            kid = jwt.get_unverified_header(credential).get("kid")
            key = self._find_key(kid)
            if key is None:
                # Keys may have rotated since the last fetch
                await self.initialize()
                key = self._find_key(kid)
            if key is None:
                raise AuthenticationError(reason="signing_key_not_found")

            claims = jwt.decode(
                credential,
                key,
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=self.issuer_url,
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.warning("Token verification failed", provider=self.name, error=str(e))
            raise AuthenticationError(reason="provider_rejected")
        except httpx.HTTPError:
            raise AuthenticationError(reason="provider_unavailable")

        if not claims.get("sub"):
            raise AuthenticationError(reason="provider_rejected")
        return self.claims_to_identity(claims)
