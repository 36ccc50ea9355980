"""
Base Identity Provider

Abstract interface for credential verification. Providers only establish who
the caller is; roles and clinic assignment come from the role store.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


class VerifiedIdentity(BaseModel):
    """Identity asserted by a provider after verifying a credential."""

    model_config = ConfigDict(frozen=True)

    subject: str
    email: str = ""
    email_verified: bool = False
    expires_at: datetime | None = None


_TRUE_STRINGS = frozenset({"true", "1", "yes"})


def _claim_flag(value: Any) -> bool:
    """Boolean claim that some providers send as a string."""
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return value is True


class BaseIdentityProvider(ABC):
    """
    Abstract base for identity providers.

    All implementations (local JWT, OIDC) must implement this interface.
    """

    name: str = "base"

    async def initialize(self) -> None:
        """Initialize provider (fetch JWKS, metadata, etc.)."""

    async def close(self) -> None:
        """Release provider resources."""

    @abstractmethod
    async def verify_credential(self, credential: str) -> VerifiedIdentity:
        """
        Verify a bearer credential.

        Args:
            credential: Raw token from the request

        Returns:
            The verified identity

        Raises:
            AuthenticationError: If the credential is invalid
        """

    def claims_to_identity(self, claims: dict[str, Any]) -> VerifiedIdentity:
        """
        Convert token claims to a VerifiedIdentity.

        Override in subclasses for provider-specific claim mapping.
        """
        exp = claims.get("exp")
        expires_at = (
            datetime.fromtimestamp(int(exp), tz=timezone.utc) if exp is not None else None
        )
        return VerifiedIdentity(
            subject=str(claims["sub"]),
            email=claims.get("email", ""),
            email_verified=_claim_flag(claims.get("email_verified")),
            expires_at=expires_at,
        )
