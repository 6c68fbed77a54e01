"""Tests for AuthService — admin tokens and the cron secret."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from rispipeline.services import AuthenticationError, ConfigurationError, PermissionDeniedError
from rispipeline.services.auth_service import _ALGORITHM, AuthService, is_admin

TEST_SECRET = "test-jwt-secret-for-unit-tests"


class TestAccessTokens:
    def test_round_trip(self):
        service = AuthService()
        token = service.create_access_token("admin@example.com")
        assert service.decode_email(token) == "admin@example.com"

    def test_expired(self):
        service = AuthService()
        token = service.create_access_token("admin@example.com", expires_in=timedelta(seconds=-1))
        with pytest.raises(AuthenticationError, match="expired"):
            service.decode_email(token)

    def test_wrong_secret(self):
        token = jwt.encode({"email": "admin@example.com"}, "other-secret", algorithm=_ALGORITHM)
        with pytest.raises(AuthenticationError):
            AuthService().decode_email(token)

    def test_refresh_type_rejected(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode(
            {"email": "admin@example.com", "type": "refresh", "exp": exp},
            TEST_SECRET,
            algorithm=_ALGORITHM,
        )
        with pytest.raises(AuthenticationError, match="type"):
            AuthService().decode_email(token)

    def test_missing_email(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({"exp": exp}, TEST_SECRET, algorithm=_ALGORITHM)
        with pytest.raises(AuthenticationError, match="payload"):
            AuthService().decode_email(token)

    def test_no_secret_configured(self, monkeypatch):
        monkeypatch.delenv("RIS_JWT_SECRET")
        with pytest.raises(ConfigurationError):
            AuthService().create_access_token("admin@example.com")


class TestAdmin:
    def test_allowlist_is_case_insensitive(self):
        assert is_admin("Admin@Example.com")
        assert not is_admin("someone@example.com")
        assert not is_admin(None)

    def test_require_admin(self):
        service = AuthService()
        assert service.require_admin(service.create_access_token("admin@example.com")) == (
            "admin@example.com"
        )

    def test_require_admin_rejects_others(self):
        service = AuthService()
        with pytest.raises(PermissionDeniedError):
            service.require_admin(service.create_access_token("someone@example.com"))

    def test_multiple_admins(self, monkeypatch):
        monkeypatch.setenv("RIS_ADMIN_EMAILS", "a@example.com, b@example.com")
        assert is_admin("b@example.com")


class TestCronSecret:
    def test_accepts_secret(self):
        AuthService().verify_cron_secret("cron-test-secret")

    @pytest.mark.parametrize("provided", [None, "", "wrong", "cron-test-secret "])
    def test_rejects(self, provided):
        with pytest.raises(AuthenticationError):
            AuthService().verify_cron_secret(provided)

    def test_unset_secret_rejects_everything(self, monkeypatch):
        monkeypatch.delenv("CRON_SECRET")
        with pytest.raises(ConfigurationError):
            AuthService().verify_cron_secret("")
