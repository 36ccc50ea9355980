"""
Tests for settings composition, log scrubbing and request context extraction.
"""

import pytest
from starlette.requests import Request

from clinicguard.config import AppSettings, AuthSettings, PostgresSettings, Settings
from clinicguard.context import REQUEST_ID_HEADER, client_ip, request_context_from
from clinicguard.logging import REDACTED, configure_logging, phi_scrubbing_processor


def _request(headers: dict | None = None, client=("192.0.2.7", 5555), path="/api/v1/patients/p1"):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": raw,
        "client": client,
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


class TestSettings:

    def test_groups_can_be_injected(self):
        settings = Settings(app=AppSettings(env="production"))
        assert settings.is_production
        assert not settings.is_development
        assert settings.auth.provider == "local"

    def test_jwks_url_derived_from_issuer(self):
        auth = AuthSettings(oidc_issuer="https://id.example.test/")
        assert auth.jwks_url == "https://id.example.test/.well-known/jwks.json"

    def test_explicit_jwks_url_wins(self):
        auth = AuthSettings(oidc_issuer="https://id.example.test", oidc_jwks_url="https://keys.example.test")
        assert auth.jwks_url == "https://keys.example.test"

    def test_no_issuer_no_jwks(self):
        assert AuthSettings(oidc_issuer=None, oidc_jwks_url=None).jwks_url is None

    def test_secret_not_in_repr(self):
        auth = AuthSettings(jwt_secret_key="very-secret")
        assert "very-secret" not in repr(auth)

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("AUDIT_QUEUE_SIZE", "42")
        assert Settings().audit.queue_size == 42

    def test_postgres_url(self):
        pg = PostgresSettings(host="db", port=6543, user="u", password="p", database="clinic")
        assert pg.connection_url == "postgresql://u:p@db:6543/clinic"


class TestPhiScrubbing:

    def test_top_level_keys_redacted(self):
        event = {"event": "chart loaded", "diagnosis": "flu", "SSN": "123-45-6789", "user_id": "u1"}
        result = phi_scrubbing_processor(None, "info", event)
        assert result == {"event": "chart loaded", "diagnosis": REDACTED, "SSN": REDACTED, "user_id": "u1"}

    def test_nested_values_redacted(self):
        event = {
            "event": "payload",
            "patient": {"id": "p1", "dob": "1980-01-01", "visits": [{"notes": "x", "id": "v1"}]},
        }
        result = phi_scrubbing_processor(None, "info", event)
        assert result["patient"]["id"] == "p1"
        assert result["patient"]["dob"] == REDACTED
        assert result["patient"]["visits"] == [{"notes": REDACTED, "id": "v1"}]

    def test_configure_logging_accepts_both_renderers(self):
        configure_logging(Settings(app=AppSettings(json_logs=True)))
        configure_logging(Settings(app=AppSettings(json_logs=False, log_level="debug")))


class TestRequestContext:

    def test_forwarded_for_first_hop(self):
        request = _request({"X-Forwarded-For": "203.0.113.9, 10.0.0.2"})
        assert client_ip(request) == "203.0.113.9"

    def test_real_ip_fallback(self):
        assert client_ip(_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"

    def test_socket_peer_fallback(self):
        assert client_ip(_request()) == "192.0.2.7"
        assert client_ip(_request(client=None)) == "unknown"

    def test_incoming_request_id_kept(self):
        ctx = request_context_from(_request({REQUEST_ID_HEADER: "abc-1", "User-Agent": "curl/8"}))
        assert ctx.request_id == "abc-1"
        assert ctx.user_agent == "curl/8"
        assert ctx.method == "GET"
        assert ctx.path == "/api/v1/patients/p1"

    @pytest.mark.parametrize("incoming", ["", "   ", "x" * 500])
    def test_unusable_request_id_replaced(self, incoming):
        ctx = request_context_from(_request({REQUEST_ID_HEADER: incoming}))
        assert ctx.request_id != incoming.strip()
        assert len(ctx.request_id) == 36
