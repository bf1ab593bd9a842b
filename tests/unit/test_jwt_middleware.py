"""
Tests for bearer-token enforcement and role loading
"""
from datetime import timedelta

import pytest

from coursetasks.middleware.jwt_auth import DEFAULT_EXEMPT, _is_exempt
from coursetasks.services.auth_service import create_jwt_token
from tests.helpers import auth_headers


class TestExemptPaths:
    @pytest.mark.parametrize("path", ["/health", "/docs", "/docs/oauth2-redirect", "/openapi.json"])
    def test_exempt(self, path):
        assert _is_exempt(path, DEFAULT_EXEMPT)

    @pytest.mark.parametrize("path", ["/api/tasks", "/healthz", "/api/health"])
    def test_not_exempt(self, path):
        assert not _is_exempt(path, DEFAULT_EXEMPT)


class TestJWTAuthMiddleware:
    def test_health_needs_no_token(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_token(self, client):
        response = client.get("/api/tasks")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Not authorized, no token",
            "message": "Not authorized, no token",
            "statusCode": 401,
        }

    def test_empty_bearer(self, client):
        response = client.get("/api/tasks", headers={"Authorization": "Bearer "})
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/api/tasks", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["message"] == "Not authorized, token failed"

    def test_expired_token(self, client, people):
        token = create_jwt_token(people.learner.user_id, "learner", expires_in=timedelta(seconds=-5))
        response = client.get("/api/tasks", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_valid_token(self, client, people):
        response = client.get("/api/tasks", headers=auth_headers(people.learner))

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": [], "count": 0}

    def test_x_authorization_header(self, client, people):
        token = create_jwt_token(people.learner.user_id, "learner")
        response = client.get("/api/users/me", headers={"X-Authorization": token})

        assert response.status_code == 200
        assert response.json()["data"]["userName"] == "lea"

    def test_token_for_deleted_user(self, client, people):
        token = create_jwt_token("deleted-user", "admin")
        response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["message"] == "Not authorized, user not found"

    def test_role_comes_from_stored_user(self, client, people):
        forged = create_jwt_token(people.learner.user_id, "admin")
        response = client.get("/api/users", headers={"Authorization": f"Bearer {forged}"})

        assert response.status_code == 403
        assert response.json()["statusCode"] == 403

    def test_options_passes_through(self, client):
        response = client.options("/api/tasks")
        assert response.status_code != 401
