"""
Tests for the response mapper.
"""

import json

import pytest
from pydantic import BaseModel

from clinicguard.errors import (
    ApprovalPendingError,
    AuthenticationError,
    InternalError,
    NotFoundError,
    RoleMismatchError,
    TenantMismatchError,
    ValidationError,
)
from clinicguard.responses import error_response, success_response


def _body(response) -> dict:
    return json.loads(response.body)


class Summary(BaseModel):
    count: int


class TestSuccessResponse:

    def test_dict_is_merged_with_request_id(self, ctx):
        response = success_response({"status": "ok"}, ctx)
        assert response.status_code == 200
        assert _body(response) == {"status": "ok", "requestId": "req-123"}

    def test_non_dict_is_wrapped(self, ctx):
        assert _body(success_response([1, 2], ctx)) == {"data": [1, 2], "requestId": "req-123"}

    def test_model_is_dumped(self, ctx):
        assert _body(success_response(Summary(count=2), ctx)) == {"count": 2, "requestId": "req-123"}

    def test_custom_status(self, ctx):
        assert success_response({}, ctx, status_code=201).status_code == 201

    def test_without_context(self):
        assert _body(success_response({}, None)) == {"requestId": None}


class TestErrorResponse:

    @pytest.mark.parametrize(
        "error, status",
        [
            (AuthenticationError(), 401),
            (RoleMismatchError(), 403),
            (ApprovalPendingError(), 403),
            (TenantMismatchError(), 404),
            (NotFoundError(), 404),
            (ValidationError("patient_id is required"), 400),
            (InternalError(), 500),
        ],
    )
    def test_status_mapping(self, ctx, error, status):
        response = error_response(error, ctx)
        assert response.status_code == status
        assert _body(response)["requestId"] == "req-123"

    def test_tenant_mismatch_indistinguishable_from_not_found(self, ctx):
        mismatch = error_response(TenantMismatchError(reason="clinic_mismatch"), ctx)
        missing = error_response(NotFoundError(), ctx)
        assert mismatch.status_code == missing.status_code
        assert _body(mismatch) == _body(missing)

    def test_validation_message_is_kept(self, ctx):
        body = _body(error_response(ValidationError("patient_id is required"), ctx))
        assert body["error"] == "patient_id is required"

    def test_unexpected_exception_is_generic(self, ctx):
        response = error_response(KeyError("patients.ssn"), ctx)
        assert response.status_code == 500
        assert _body(response) == {"error": "Internal server error", "requestId": "req-123"}

    def test_internal_detail_not_exposed(self, ctx):
        body = _body(error_response(InternalError("db password rejected"), ctx))
        assert body["error"] == "Internal server error"
