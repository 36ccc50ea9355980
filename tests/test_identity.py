"""
Tests for identity resolution and the local JWT provider.
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from unittest.mock import AsyncMock

from clinicguard.errors import AuthenticationError
from clinicguard.identity import IdentityResolver
from clinicguard.models import Role
from clinicguard.providers import LocalJWTProvider, VerifiedIdentity
from clinicguard.stores import InMemoryRoleStore, PostgresRoleStore, RoleRecord

from conftest import make_pool


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
SECRET = "test-secret"


@pytest.fixture
def provider():
    return LocalJWTProvider(secret_key=SECRET)


@pytest.fixture
def role_store():
    return InMemoryRoleStore([
        RoleRecord(user_id="user-d1", role=Role.DOCTOR, clinic_id="c1", doctor_id="d1", approved=True),
        RoleRecord(user_id="user-p1", role=Role.PATIENT, clinic_id="c1", patient_id="p1"),
        RoleRecord(user_id="user-orphan", role=Role.PATIENT, clinic_id=None, patient_id="p7"),
    ])


@pytest.fixture
def resolver(provider, role_store, audit_logger):
    return IdentityResolver(provider, role_store, audit_logger, clock=lambda: NOW)


class TestLocalJWTProvider:

    @pytest.mark.asyncio
    async def test_issue_and_verify(self, provider):
        token = provider.issue_token("user-d1", email="d1@example.test", now=NOW)
        identity = await provider.verify_credential(token)

        assert identity.subject == "user-d1"
        assert identity.email == "d1@example.test"
        assert identity.email_verified is True
        assert identity.expires_at == NOW + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, provider):
        token = LocalJWTProvider(secret_key="other").issue_token("user-d1", now=NOW)
        with pytest.raises(AuthenticationError):
            await provider.verify_credential(token)

    @pytest.mark.asyncio
    async def test_garbage_rejected(self, provider):
        with pytest.raises(AuthenticationError):
            await provider.verify_credential("not-a-jwt")


class TestIdentityResolver:

    @pytest.mark.asyncio
    async def test_resolves_principal(self, resolver, provider, ctx, audit_logger, audit_sink):
        token = provider.issue_token("user-d1", email="d1@example.test", now=NOW)

        principal = await resolver.resolve_principal(token, ctx)

        assert principal.id == "user-d1"
        assert principal.role is Role.DOCTOR
        assert principal.clinic_id == "c1"
        assert principal.metadata.doctor_id == "d1"
        assert principal.metadata.approved is True

        await audit_logger.stop()
        [entry] = audit_sink.query(action="AUTH_SUCCESS")
        assert entry.user_id == "user-d1"
        assert entry.clinic_id == "c1"

    @pytest.mark.asyncio
    async def test_principal_is_frozen(self, resolver, provider, ctx):
        principal = await resolver.resolve_principal(provider.issue_token("user-p1", now=NOW), ctx)
        with pytest.raises(Exception):
            principal.clinic_id = "c2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credential", [None, "", "   "])
    async def test_missing_credential(self, resolver, ctx, audit_logger, audit_sink, credential):
        with pytest.raises(AuthenticationError):
            await resolver.resolve_principal(credential, ctx)

        await audit_logger.stop()
        [entry] = audit_sink.query(action="AUTH_FAILED")
        assert entry.metadata == {"reason": "missing_credential"}

    @pytest.mark.asyncio
    async def test_expired_session(self, resolver, provider, ctx, audit_logger, audit_sink):
        token = provider.issue_token("user-d1", now=NOW - timedelta(hours=2))

        with pytest.raises(AuthenticationError):
            await resolver.resolve_principal(token, ctx)

        await audit_logger.stop()
        [entry] = audit_sink.query(action="AUTH_FAILED")
        assert entry.metadata["reason"] == "session_expired"

    @pytest.mark.asyncio
    async def test_leeway_accepts_recently_expired(self, provider, role_store, ctx):
        resolver = IdentityResolver(provider, role_store, clock=lambda: NOW, leeway_seconds=120)
        token = provider.issue_token(
            "user-d1", expires_delta=timedelta(minutes=1), now=NOW - timedelta(minutes=2)
        )
        principal = await resolver.resolve_principal(token, ctx)
        assert principal.id == "user-d1"

    @pytest.mark.asyncio
    async def test_missing_expiry_rejected(self, role_store, ctx):
        provider = AsyncMock()
        provider.verify_credential = AsyncMock(
            return_value=VerifiedIdentity(subject="user-d1", expires_at=None)
        )
        resolver = IdentityResolver(provider, role_store, clock=lambda: NOW)
        with pytest.raises(AuthenticationError):
            await resolver.resolve_principal("token", ctx)

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_default_role(self, resolver, provider, ctx, audit_logger, audit_sink):
        token = provider.issue_token("user-nobody", now=NOW)

        with pytest.raises(AuthenticationError):
            await resolver.resolve_principal(token, ctx)

        await audit_logger.stop()
        [entry] = audit_sink.query(action="AUTH_FAILED")
        assert entry.metadata["reason"] == "role_not_found"
        assert entry.user_id == "user-nobody"

    @pytest.mark.asyncio
    async def test_user_without_clinic(self, resolver, provider, ctx, audit_logger, audit_sink):
        token = provider.issue_token("user-orphan", now=NOW)

        with pytest.raises(AuthenticationError):
            await resolver.resolve_principal(token, ctx)

        await audit_logger.stop()
        [entry] = audit_sink.query(action="AUTH_FAILED")
        assert entry.metadata["reason"] == "clinic_not_assigned"

    @pytest.mark.asyncio
    async def test_provider_rejection(self, resolver, ctx, audit_logger, audit_sink):
        with pytest.raises(AuthenticationError):
            await resolver.resolve_principal("not-a-jwt", ctx)

        await audit_logger.stop()
        [entry] = audit_sink.query(action="AUTH_FAILED")
        assert entry.metadata["reason"] == "provider_rejected"

    @pytest.mark.asyncio
    async def test_unrecognized_role_in_store(self, provider, ctx, audit_logger, audit_sink):
        conn = AsyncMock()
        conn.fetchrow = AsyncMock(return_value={
            "user_id": "user-s1",
            "role": "support",
            "clinic_id": "c1",
            "doctor_id": None,
            "patient_id": None,
            "approved": False,
        })
        resolver = IdentityResolver(
            provider, PostgresRoleStore(make_pool(conn)), audit_logger, clock=lambda: NOW
        )

        with pytest.raises(AuthenticationError) as exc_info:
            await resolver.resolve_principal(provider.issue_token("user-s1", now=NOW), ctx)
        assert exc_info.value.status_code == 401

        await audit_logger.stop()
        [entry] = audit_sink.query(action="AUTH_FAILED")
        assert entry.metadata == {"reason": "role_not_recognized"}
        assert entry.user_id == "user-s1"


class TestClaimMapping:

    @pytest.mark.parametrize(
        "claim, expected",
        [
            (True, True),
            (False, False),
            ("true", True),
            ("True", True),
            ("false", False),
            ("0", False),
            (None, False),
            (1, False),
        ],
    )
    def test_email_verified_flag(self, provider, claim, expected):
        claims = {"sub": "user-1", "exp": int(NOW.timestamp())}
        if claim is not None:
            claims["email_verified"] = claim
        assert provider.claims_to_identity(claims).email_verified is expected

    @pytest.mark.asyncio
    async def test_string_false_from_token(self, provider):
        token = jwt.encode(
            {"sub": "user-1", "email_verified": "false", "exp": int(NOW.timestamp())},
            SECRET,
            algorithm="HS256",
        )
        identity = await provider.verify_credential(token)
        assert identity.email_verified is False
