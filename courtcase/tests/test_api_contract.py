"""
Tests for API Contract
======================

Ensures the API always returns valid JSON with expected structure.
Tests both success and error cases.
"""

import os
from pathlib import Path

import pytest

# Add parent to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fastapi.testclient import TestClient
from courtcase.api import app
from courtcase.repository import case_number_pattern


# =============================================================================
# Test Client
# =============================================================================

@pytest.fixture
def client(tmp_path):
    """Test client on a fresh database; the context manager runs startup"""
    from courtcase.db.session import reset_engine

    old_db_url = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = f"sqlite:///{tmp_path / 'api.db'}"
    reset_engine()

    with TestClient(app) as c:
        yield c

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


def _register(client, email="attorney@firm.test", password="secret1"):
    response = client.post("/auth/register", json={
        "email": email,
        "password": password,
        "confirm_password": password,
    })
    assert response.status_code == 200, response.text
    return response.json()


def _auth_headers(client, email="attorney@firm.test"):
    tokens = _register(client, email)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def _create_case(http, headers, **overrides):
    body = {"client_name": "John Smith", "current_summary": "Charged with burglary"}
    body.update(overrides)
    response = http.post("/cases", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# Health Check Tests
# =============================================================================

class TestHealthEndpoint:
    """Tests for /health endpoint"""

    def test_health_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_returns_valid_json(self, client):
        data = client.get("/health").json()

        assert data["status"] == "ok"
        assert "version" in data
        assert "timestamp" in data

    def test_unknown_endpoint(self, client):
        response = client.get("/no-such-endpoint")
        assert response.status_code == 404
        assert response.json() == {"error": "Endpoint not found"}

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" not in response.headers


# =============================================================================
# CORS Tests
# =============================================================================

class TestCors:

    def test_allowed_origin_preflight(self, client):
        response = client.options("/cases", headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "PATCH",
        })
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert "PATCH" in response.headers["access-control-allow-methods"]

    def test_unknown_origin_rejected(self, client):
        response = client.options("/cases", headers={
            "Origin": "http://evil.test",
            "Access-Control-Request-Method": "GET",
        })
        assert response.status_code == 400
        assert "access-control-allow-origin" not in response.headers

    def test_simple_request_from_unknown_origin_has_no_cors_header(self, client):
        response = client.get("/health", headers={"Origin": "http://evil.test"})
        assert response.status_code == 200
        assert "access-control-allow-origin" not in response.headers


# =============================================================================
# Auth Endpoint Tests
# =============================================================================

class TestAuthEndpoints:

    def test_register_returns_tokens(self, client):
        data = _register(client)
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "bearer"

    def test_register_duplicate(self, client):
        _register(client)
        response = client.post("/auth/register", json={"email": "attorney@firm.test", "password": "secret1"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_register_invalid_email(self, client):
        response = client.post("/auth/register", json={"email": "not-an-email", "password": "secret1"})
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert "email" in data["fields"]

    def test_register_short_password(self, client):
        response = client.post("/auth/register", json={"email": "a@firm.test", "password": "123"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Password must be at least 6 characters long"

    def test_login(self, client):
        _register(client)
        response = client.post("/auth/login", json={"email": "attorney@firm.test", "password": "secret1"})
        assert response.status_code == 200
        assert response.json()["access_token"]

    def test_login_bad_credentials(self, client):
        _register(client)
        response = client.post("/auth/login", json={"email": "attorney@firm.test", "password": "wrong-one"})
        assert response.status_code == 401
        assert response.json() == {"error": "unauthenticated", "detail": "Invalid email or password"}

    def test_me(self, client):
        headers = _auth_headers(client)
        data = client.get("/auth/me", headers=headers).json()
        assert data["email"] == "attorney@firm.test"
        assert data["name"] == "attorney"

    def test_me_requires_token(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/cases", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_refresh_rotates(self, client):
        tokens = _register(client)

        response = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["access_token"]

        # The used refresh token is revoked
        response = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 401

    def test_refresh_rejects_access_token(self, client):
        tokens = _register(client)
        response = client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client):
        headers = _auth_headers(client)

        response = client.post("/auth/logout", headers=headers)
        assert response.status_code == 204

        assert client.get("/auth/me", headers=headers).status_code == 401


# =============================================================================
# Case Endpoint Tests
# =============================================================================

class TestCaseEndpoints:

    def test_requires_authentication(self, client):
        response = client.get("/cases")
        assert response.status_code == 401
        assert response.json() == {"error": "unauthenticated", "detail": "User not authenticated"}

    def test_create_and_list(self, client):
        headers = _auth_headers(client)
        created = _create_case(client, headers, client={"first_name": "John", "email": "john@example.com"})

        assert case_number_pattern().match(created["case_number"])
        assert created["status"] == "Open"
        assert created["client"]["email"] == "john@example.com"

        listed = client.get("/cases", headers=headers).json()
        assert [c["id"] for c in listed] == [created["id"]]

    def test_create_validation(self, client):
        headers = _auth_headers(client)
        response = client.post("/cases", json={"client_name": ""}, headers=headers)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert data["fields"]["client_name"] == "Client name is required"
        assert data["fields"]["current_summary"] == "Case summary is required"

    def test_get_and_patch(self, client):
        headers = _auth_headers(client)
        created = _create_case(client, headers)

        response = client.patch(f"/cases/{created['id']}", json={
            "status": "Pending",
            "legal_strategy": "Challenge the search",
            "user_id": "someone-else",
        }, headers=headers)
        assert response.status_code == 200
        updated = response.json()
        assert updated["status"] == "Pending"
        assert updated["legal_strategy"] == "Challenge the search"
        assert updated["user_id"] == created["user_id"]

        fetched = client.get(f"/cases/{created['id']}", headers=headers).json()
        assert fetched == updated

    def test_missing_case(self, client):
        headers = _auth_headers(client)
        response = client.get("/cases/missing", headers=headers)
        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "detail": "Case not found"}

    def test_other_users_case_is_forbidden(self, client):
        owner = _auth_headers(client, "owner@firm.test")
        other = _auth_headers(client, "other@firm.test")
        created = _create_case(client, owner)

        for method, path in [
            ("get", f"/cases/{created['id']}"),
            ("patch", f"/cases/{created['id']}"),
            ("post", f"/cases/{created['id']}/delete"),
            ("post", f"/cases/{created['id']}/restore"),
            ("delete", f"/cases/{created['id']}"),
            ("get", f"/cases/{created['id']}/export"),
        ]:
            kwargs = {"json": {"client_name": "Mallory"}} if method == "patch" else {}
            response = getattr(client, method)(path, headers=other, **kwargs)
            assert response.status_code == 403, path
            assert response.json()["reason"] == "ownership"

        assert client.get("/cases", headers=other).json() == []

    def test_trash_lifecycle(self, client):
        headers = _auth_headers(client)
        created = _create_case(client, headers)
        case_url = f"/cases/{created['id']}"

        # Must be in trash first
        response = client.delete(case_url, headers=headers)
        assert response.status_code == 400

        deleted = client.post(f"{case_url}/delete", headers=headers).json()
        assert deleted["is_deleted"] is True
        assert deleted["status"] == "Deleted"
        assert client.get("/cases", headers=headers).json() == []

        restored = client.post(f"{case_url}/restore", headers=headers).json()
        assert restored["status"] == "Open"
        assert len(client.get("/cases", headers=headers).json()) == 1

        client.post(f"{case_url}/delete", headers=headers)
        response = client.delete(case_url, headers=headers)
        assert response.status_code == 204

        assert client.get(case_url, headers=headers).status_code == 404

    def test_read_only_case(self, client):
        headers = _auth_headers(client)
        created = _create_case(client, headers)
        client.patch(f"/cases/{created['id']}", json={"can_write": False}, headers=headers)

        response = client.patch(f"/cases/{created['id']}", json={"client_name": "Changed"}, headers=headers)
        assert response.status_code == 403
        assert response.json()["reason"] == "write_permission"

    def test_export(self, client):
        headers = _auth_headers(client)
        created = _create_case(client, headers)

        response = client.get(f"/cases/{created['id']}/export", headers=headers)
        assert response.status_code == 200
        assert response.json()["case_number"] == created["case_number"]
        assert created["case_number"] in response.headers["content-disposition"]

        client.patch(f"/cases/{created['id']}", json={"can_export": False}, headers=headers)
        response = client.get(f"/cases/{created['id']}/export", headers=headers)
        assert response.status_code == 403
        assert response.json()["reason"] == "export_permission"
