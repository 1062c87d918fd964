"""
Gatehouse — Error Handling End-to-End Tests
=============================================

What:  Drives the diagnostics routes through the full middleware pipeline and
       checks the Canonical Error Record on the wire.

What we test:
    ✅ Every failure class returns {code, message, details, requestId, timestamp, path}
    ✅ HTTP status always equals the record's code
    ✅ requestId matches the X-Request-ID response header
    ✅ Unknown routes are normalized too
    ✅ Stack traces only in development
    ✅ Security headers on successes and failures
    ✅ Diagnostics routes absent in production
"""

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from gatehouse.exceptions import FieldViolation, InputValidationError
from gatehouse.main import create_app
from gatehouse.schemas.errors import ErrorResponse, ValidationDetails

RECORD_KEYS = {"code", "message", "details", "requestId", "timestamp", "path"}


def _assert_record(response, code, path):
    body = response.json()
    assert response.status_code == code
    assert response.headers["content-type"].startswith("application/json")
    assert set(body) == RECORD_KEYS
    ErrorResponse.model_validate(body)
    assert body["code"] == code
    assert body["path"] == path
    assert body["requestId"] == response.headers["x-request-id"]
    return body


class TestDiagnosticsRoutes:
    @pytest.mark.asyncio
    async def test_generic_error(self, test_client):
        response = await test_client.get("/api/v1/test-error/generic-error")
        body = _assert_record(response, 500, "/api/v1/test-error/generic-error")

        assert body["message"] == "This is a generic error"
        assert body["details"] == {"error_type": "RuntimeError"}

    @pytest.mark.asyncio
    async def test_bad_request(self, test_client):
        response = await test_client.get("/api/v1/test-error/bad-request")
        body = _assert_record(response, 400, "/api/v1/test-error/bad-request")

        assert body["message"] == "This is a bad request error"
        assert body["details"]["statusCode"] == 400

    @pytest.mark.asyncio
    async def test_internal_server_error(self, test_client):
        response = await test_client.get("/api/v1/test-error/internal-server-error")
        body = _assert_record(response, 500, "/api/v1/test-error/internal-server-error")

        assert body["message"] == "This is an internal server error"

    @pytest.mark.asyncio
    async def test_validation_error(self, test_client):
        response = await test_client.post(
            "/api/v1/test-error/validation-error", json={"invalidField": "invalid"}
        )
        body = _assert_record(response, 422, "/api/v1/test-error/validation-error")

        assert body["message"] == "Validation failed"
        details = ValidationDetails.model_validate(body["details"])
        properties = {e.property for e in details.errors}
        assert {"applicant", "document_id", "invalidField"} <= properties

    @pytest.mark.asyncio
    async def test_nested_validation_error(self, test_client):
        response = await test_client.post(
            "/api/v1/test-error/validation-error",
            json={"applicant": {"first": ""}, "document_id": "DOC-1234"},
        )
        body = _assert_record(response, 422, "/api/v1/test-error/validation-error")

        applicant = next(e for e in body["details"]["errors"] if e["property"] == "applicant")
        children = {c["property"]: c for c in applicant["children"]}
        assert children["first"]["value"] == ""
        assert "string_too_short" in children["first"]["constraints"]
        assert "missing" in children["last"]["constraints"]

    @pytest.mark.asyncio
    async def test_valid_body_passes(self, test_client):
        response = await test_client.post(
            "/api/v1/test-error/validation-error",
            json={"applicant": {"first": "Ada", "last": "Lovelace"}, "document_id": "DOC-1234"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["document_id"] == "DOC-1234"

    @pytest.mark.asyncio
    async def test_persistence_error(self, test_client):
        response = await test_client.get("/api/v1/test-error/persistence-error-simulation")
        body = _assert_record(response, 409, "/api/v1/test-error/persistence-error-simulation")

        assert body["message"] == "Unique constraint violation"
        assert body["details"] == {"target": ["email"], "field": "email"}

    @pytest.mark.asyncio
    async def test_record_not_found(self, test_client):
        response = await test_client.get("/api/v1/test-error/record-not-found")
        body = _assert_record(response, 404, "/api/v1/test-error/record-not-found")

        assert body["message"] == "Record not found"

    @pytest.mark.asyncio
    async def test_custom_request_id_in_record(self, test_client):
        response = await test_client.get(
            "/api/v1/test-error/bad-request", headers={"X-Request-ID": "CUSTOM-TEST-ID"}
        )
        assert response.json()["requestId"] == "CUSTOM-TEST-ID"

    @pytest.mark.asyncio
    async def test_unknown_route(self, test_client):
        response = await test_client.get("/api/v1/does-not-exist")
        body = _assert_record(response, 404, "/api/v1/does-not-exist")

        assert body["message"] == "Not Found"


class TestHandlerRaisedFailures:
    """Failures raised by arbitrary handlers, not just the diagnostics routes."""

    @pytest.mark.asyncio
    async def test_input_validation_error_and_integrity_error(self, make_settings, client_for):
        app = create_app(make_settings())

        class Driver(Exception):
            sqlstate = "23503"
            constraint_name = "claims_campaign_id_fkey"

        @app.post("/api/v1/claims")
        async def create_claim():
            raise IntegrityError("INSERT INTO claims ...", {}, Driver("fk"))

        @app.put("/api/v1/claims/{claim_id}")
        async def update_claim(claim_id: int):
            raise InputValidationError(
                [FieldViolation("amount", -5, {"min": "amount must not be less than 0"})]
            )

        async with client_for(app) as client:
            fk = await client.post("/api/v1/claims")
            invalid = await client.put("/api/v1/claims/3")

        fk_body = _assert_record(fk, 400, "/api/v1/claims")
        assert fk_body["message"] == "Foreign key constraint violation"
        assert fk_body["details"] == {"field_name": "claims_campaign_id_fkey"}

        invalid_body = _assert_record(invalid, 422, "/api/v1/claims/3")
        assert invalid_body["details"]["errors"][0]["property"] == "amount"


class TestEnvironmentBehaviour:
    @pytest.mark.asyncio
    async def test_stack_trace_in_development(self, make_settings, client_for):
        app = create_app(make_settings(environment="development"))
        async with client_for(app) as client:
            response = await client.get("/api/v1/test-error/generic-error")

        assert "This is a generic error" in response.json()["details"]["stack"]

    @pytest.mark.asyncio
    async def test_no_stack_trace_in_test(self, test_client):
        response = await test_client.get("/api/v1/test-error/generic-error")
        assert "stack" not in response.json()["details"]

    @pytest.mark.asyncio
    async def test_diagnostics_not_mounted_in_production(self, make_settings, client_for):
        app = create_app(make_settings(environment="production"))
        async with client_for(app) as client:
            response = await client.get("/api/v1/test-error/generic-error")

        _assert_record(response, 404, "/api/v1/test-error/generic-error")


class TestSecurityHeaders:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/api/v1/health", "/api/v1/test-error/bad-request"])
    async def test_headers_present(self, test_client, path):
        response = await test_client.get(path)

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["referrer-policy"] == "no-referrer"
        assert "content-security-policy" not in response.headers

    @pytest.mark.asyncio
    async def test_headers_on_rejection(self, test_client):
        response = await test_client.get("/api/v1/", headers={"Origin": "http://malicious.com"})
        assert response.headers["x-frame-options"] == "DENY"


class TestRootAndHealth:
    @pytest.mark.asyncio
    async def test_root(self, test_client):
        response = await test_client.get("/api/v1/")
        assert response.status_code == 200
        assert response.json() == {
            "message": "Welcome to Pulsefy/Soter API",
            "version": "v1",
            "docs": "/api/docs",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/health", "/api/v1/health"])
    async def test_health(self, test_client, path):
        response = await test_client.get(path)
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestFrameworkErrorHeaders:
    @pytest.mark.asyncio
    async def test_method_not_allowed_keeps_allow(self, test_client):
        response = await test_client.post("/api/v1/health")
        _assert_record(response, 405, "/api/v1/health")

        assert "GET" in response.headers["allow"]

    @pytest.mark.asyncio
    async def test_custom_headers_kept(self, make_settings, client_for):
        app = create_app(make_settings())

        @app.get("/api/v1/private")
        async def private():
            raise HTTPException(status_code=401, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})

        async with client_for(app) as client:
            response = await client.get("/api/v1/private")

        _assert_record(response, 401, "/api/v1/private")
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_not_modified_has_no_body(self, make_settings, client_for):
        app = create_app(make_settings())

        @app.get("/api/v1/cached")
        async def cached():
            raise HTTPException(status_code=304, headers={"ETag": '"v1"'})

        async with client_for(app) as client:
            response = await client.get("/api/v1/cached")

        assert response.status_code == 304
        assert response.content == b""
        assert response.headers["etag"] == '"v1"'
        assert response.headers["x-request-id"]


class TestBoundaryNeverLeaks:
    @pytest.mark.asyncio
    async def test_unhashable_code_attribute(self, make_settings, client_for):
        app = create_app(make_settings())

        class OddError(Exception):
            code = ["E1"]

        @app.get("/api/v1/odd")
        async def odd():
            raise OddError("boom")

        async with client_for(app) as client:
            response = await client.get("/api/v1/odd")

        body = _assert_record(response, 500, "/api/v1/odd")
        assert body["message"] == "boom"
        assert body["details"]["error_type"] == "OddError"
