"""
Tests for password hashing, token verification and secret loading
"""
import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import jwt
import pytest
from botocore.exceptions import ClientError

from coursetasks.services.auth_service import (
    create_jwt_token,
    hash_password,
    verify_jwt_token,
    verify_password,
)
from coursetasks.utils.jwt_secret import clear_jwt_secret_cache, get_jwt_secret
from tests.helpers import TEST_JWT_SECRET


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("secret123")
        assert hashed != "secret123"
        assert verify_password("secret123", hashed)
        assert not verify_password("secret124", hashed)

    def test_non_bcrypt_hash_never_matches(self):
        assert not verify_password("secret123", "secret123")
        assert not verify_password("", hash_password("x"))


class TestTokens:
    def test_round_trip(self):
        claims = verify_jwt_token(create_jwt_token("u1", "tutor"))
        assert claims["id"] == "u1"
        assert claims["role"] == "tutor"

    def test_expired_token_is_rejected(self):
        token = create_jwt_token("u1", "learner", expires_in=timedelta(seconds=-10))
        assert verify_jwt_token(token) is None

    def test_foreign_signature_is_rejected(self):
        token = jwt.encode({"id": "u1", "role": "admin"}, "another-secret-of-sufficient-length!", algorithm="HS256")
        assert verify_jwt_token(token) is None

    def test_token_without_id_is_rejected(self):
        token = jwt.encode({"role": "admin"}, TEST_JWT_SECRET, algorithm="HS256")
        assert verify_jwt_token(token) is None

    def test_garbage_is_rejected(self):
        assert verify_jwt_token("not.a.token") is None
        assert verify_jwt_token("") is None

    def test_missing_secret(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET")
        assert verify_jwt_token("anything") is None
        with pytest.raises(RuntimeError):
            create_jwt_token("u1", "learner")


class TestJwtSecret:
    """Secret comes from the environment in development and Secrets Manager in production"""

    def test_development_reads_environment(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "dev-secret")
        assert get_jwt_secret() == "dev-secret"

    def test_production_reads_secrets_manager_once(self, monkeypatch):
        monkeypatch.setenv("PYTHON_ENV", "production")
        monkeypatch.setenv("JWT_SECRET_NAME", "my-secret")
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": json.dumps({"jwt_secret": "from-aws"})}

        with patch("coursetasks.utils.jwt_secret.secrets_client", return_value=client):
            assert get_jwt_secret() == "from-aws"
            assert get_jwt_secret() == "from-aws"

        client.get_secret_value.assert_called_once_with(SecretId="my-secret")
        clear_jwt_secret_cache()

    def test_production_fails_fast(self, monkeypatch):
        monkeypatch.setenv("PYTHON_ENV", "production")
        client = MagicMock()
        client.get_secret_value.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "missing"}}, "GetSecretValue"
        )

        with patch("coursetasks.utils.jwt_secret.secrets_client", return_value=client):
            with pytest.raises(RuntimeError, match="ResourceNotFoundException"):
                get_jwt_secret()

    def test_production_rejects_secret_without_field(self, monkeypatch):
        monkeypatch.setenv("PYTHON_ENV", "production")
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": json.dumps({"other": "x"})}

        with patch("coursetasks.utils.jwt_secret.secrets_client", return_value=client):
            with pytest.raises(RuntimeError, match="jwt_secret field not found"):
                get_jwt_secret()
