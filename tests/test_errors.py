"""Tests for the error shape, correlation ids and the 500 fallback."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from kasiviral.platform.errors import (
    AuthenticationError,
    RateLimitError,
    UpstreamTimeoutError,
    ValidationError,
    register_exception_handlers,
)


def _app():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/validation")
    def validation():
        raise ValidationError("bad plan", details={"field": "plan"})

    @app.get("/auth")
    def auth():
        raise AuthenticationError()

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret internals")

    @app.get("/ok")
    def ok():
        return {"ok": True}

    return app


class TestErrorClasses:

    def test_to_dict_shape(self):
        error = ValidationError("bad plan", details={"field": "plan"})
        assert error.status_code == 400
        assert error.to_dict() == {
            "error": {"code": "VALIDATION_ERROR", "message": "bad plan", "details": {"field": "plan"}}
        }

    def test_rate_limit_headers(self):
        error = RateLimitError(retry_after=42)
        assert error.status_code == 429
        assert error.headers == {"Retry-After": "42"}
        assert error.details == {"retry_after_seconds": 42}

    def test_timeout_names_operation(self):
        error = UpstreamTimeoutError("Identity verification")
        assert error.status_code == 504
        assert error.details == {"operation": "Identity verification"}


class TestHandlers:

    def test_app_error_rendered(self):
        response = TestClient(_app()).get("/validation")

        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "plan"}
        assert response.headers["X-Correlation-ID"]

    def test_authentication_error_has_challenge(self):
        response = TestClient(_app()).get("/auth")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_correlation_id_echoed(self):
        response = TestClient(_app()).get("/ok", headers={"X-Correlation-ID": "corr-123"})

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "corr-123"

    def test_unhandled_exception_is_generic_500(self):
        client = TestClient(_app(), raise_server_exceptions=False)

        response = client.get("/boom", headers={"X-Correlation-ID": "corr-500"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert body["error"]["details"] == {"correlation_id": "corr-500"}
        assert "secret internals" not in response.text
