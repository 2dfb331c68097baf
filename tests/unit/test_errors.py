"""Unit tests for AppError hierarchy and the global exception handlers."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from errors import (
    AppError,
    AuthenticationError,
    ChallengeExhaustedError,
    ChallengeExpiredError,
    ChallengeMismatchError,
    ChallengeNotFoundError,
    ConflictError,
    ForbiddenError,
    IdentityAmbiguousError,
    NotFoundError,
    ProviderNotConfiguredError,
    RateLimitError,
    ResendThrottledError,
    StorageCorruptError,
    ValidationError,
    WriteConflictError,
    register_error_handlers,
)


@pytest.mark.parametrize(
    "cls, status_code, error_code",
    [
        (ValidationError, 400, "validation_error"),
        (AuthenticationError, 401, "authentication_error"),
        (ForbiddenError, 403, "forbidden"),
        (NotFoundError, 404, "not_found"),
        (ConflictError, 409, "conflict"),
        (RateLimitError, 429, "rate_limit_exceeded"),
        (ProviderNotConfiguredError, 501, "provider_not_configured"),
        (IdentityAmbiguousError, 422, "identity_ambiguous"),
        (WriteConflictError, 409, "write_conflict"),
        (ChallengeNotFoundError, 400, "challenge_not_found"),
        (ChallengeExpiredError, 400, "challenge_expired"),
        (ChallengeExhaustedError, 429, "challenge_exhausted"),
        (StorageCorruptError, 500, "storage_corrupt"),
    ],
)
def test_status_and_code(cls, status_code, error_code):
    e = cls("message")
    assert e.status_code == status_code
    assert e.error_code == error_code
    assert e.message == "message"
    assert isinstance(e, AppError)


class TestAppErrorToDict:
    def test_basic(self):
        e = NotFoundError("user not found")
        assert e.to_dict() == {"error": "user not found", "code": "not_found"}

    @pytest.mark.parametrize(
        "kwargs, key, value",
        [
            ({"field": "email"}, "field", "email"),
            ({"details": {"min": 1, "max": 10}}, "details", {"min": 1, "max": 10}),
        ],
        ids=["with_field", "with_details"],
    )
    def test_optional_key_present(self, kwargs, key, value):
        e = ValidationError("invalid", **kwargs)
        assert e.to_dict()[key] == value

    def test_no_optional_keys_when_absent(self):
        d = NotFoundError("missing").to_dict()
        assert "field" not in d
        assert "details" not in d


class TestChallengeErrors:
    def test_mismatch_carries_remaining(self):
        e = ChallengeMismatchError("Invalid code", remaining_attempts=3)
        assert e.status_code == 400
        assert e.remaining_attempts == 3
        assert e.to_dict()["details"] == {"remaining_attempts": 3}
        assert e.headers() is None

    def test_resend_throttled_sets_retry_after(self):
        e = ResendThrottledError("Too soon", retry_after=42)
        assert e.status_code == 429
        assert e.retry_after == 42
        assert e.headers() == {"Retry-After": "42"}
        assert e.to_dict()["details"] == {"retry_after": 42}

    def test_write_conflict_is_conflict(self):
        assert isinstance(WriteConflictError("dup", field="email"), ConflictError)


class TestExceptionHandlers:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_error_handlers(app)

        @app.get("/throttled")
        async def throttled():
            raise ResendThrottledError("Too soon", retry_after=12)

        @app.get("/boom")
        async def boom():
            raise RuntimeError("kaboom")

        return TestClient(app, raise_server_exceptions=False)

    def test_app_error_rendered_with_headers(self, client):
        resp = client.get("/throttled")
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "12"
        assert resp.json() == {
            "error": "Too soon",
            "code": "resend_throttled",
            "details": {"retry_after": 12},
        }

    def test_unhandled_is_generic_500(self, client):
        resp = client.get("/boom")
        assert resp.status_code == 500
        assert resp.json()["code"] == "internal_error"
        assert "kaboom" not in resp.text
