"""
Tests for the OIDC provider and provider factory.
"""

import httpx
import pytest
from jose import jwt

from clinicguard.config import AuthSettings, Settings
from clinicguard.errors import AuthenticationError
from clinicguard.providers import LocalJWTProvider, OIDCProvider, get_identity_provider


ISSUER = "https://id.example.test"
JWKS = {"keys": [{"kid": "k1", "kty": "RSA", "alg": "RS256", "use": "sig", "n": "AQAB", "e": "AQAB"}]}


def _client(status: int = 200, body: dict | None = None, calls: list | None = None) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(status, json=body if body is not None else JWKS)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _token(kid: str) -> str:
    return jwt.encode({"sub": "user-1"}, "secret", algorithm="HS256", headers={"kid": kid})


class TestOIDCProvider:

    @pytest.mark.asyncio
    async def test_initialize_fetches_jwks(self):
        calls = []
        provider = OIDCProvider(ISSUER, "client-1", http_client=_client(calls=calls))

        await provider.initialize()

        assert calls == [f"{ISSUER}/.well-known/jwks.json"]
        assert provider._find_key("k1") is not None

    @pytest.mark.asyncio
    async def test_unknown_kid_refetches_then_rejects(self):
        calls = []
        provider = OIDCProvider(ISSUER, "client-1", http_client=_client(calls=calls))

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.verify_credential(_token("rotated"))

        assert exc_info.value.details["reason"] == "signing_key_not_found"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_wrong_algorithm_rejected(self):
        provider = OIDCProvider(ISSUER, "client-1", http_client=_client())

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.verify_credential(_token("k1"))

        assert exc_info.value.details["reason"] == "provider_rejected"

    @pytest.mark.asyncio
    async def test_jwks_unavailable(self):
        provider = OIDCProvider(ISSUER, "client-1", http_client=_client(status=503, body={}))

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.verify_credential(_token("k1"))

        assert exc_info.value.details["reason"] == "provider_unavailable"

    @pytest.mark.asyncio
    async def test_malformed_token(self):
        provider = OIDCProvider(ISSUER, "client-1", http_client=_client())
        with pytest.raises(AuthenticationError):
            await provider.verify_credential("not-a-jwt")


class TestProviderFactory:

    def test_local_by_default(self):
        settings = Settings(auth=AuthSettings(provider="local", jwt_secret_key="s3cret"))
        provider = get_identity_provider(settings)
        assert isinstance(provider, LocalJWTProvider)
        assert provider.secret_key == "s3cret"

    def test_oidc(self):
        settings = Settings(
            auth=AuthSettings(provider="oidc", oidc_issuer=ISSUER + "/", oidc_client_id="client-1")
        )
        provider = get_identity_provider(settings)
        assert isinstance(provider, OIDCProvider)
        assert provider.jwks_url == f"{ISSUER}/.well-known/jwks.json"

    def test_oidc_requires_issuer(self):
        settings = Settings(auth=AuthSettings(provider="oidc", oidc_issuer=None, oidc_client_id=None))
        with pytest.raises(ValueError):
            get_identity_provider(settings)
