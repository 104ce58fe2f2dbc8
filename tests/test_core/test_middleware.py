"""
Tests for the middleware stack and exception handlers.
"""

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from core.exceptions import AuthenticationError, ItemNotFoundError, ValidationError
from core.middleware import (
    CacheControlMiddleware,
    CorrelationMiddleware,
    ErrorHandlingMiddleware,
    PerformanceMiddleware,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
    register_exception_handlers,
)
from core.logging_config import get_correlation_id
from core.performance import init_metrics_collector


@pytest.fixture
def app():
    """Create a FastAPI app with the full middleware stack."""
    app = FastAPI()
    register_exception_handlers(app)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(CacheControlMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestValidationMiddleware, max_request_size=1024)
    app.add_middleware(PerformanceMiddleware)
    app.add_middleware(CorrelationMiddleware)

    @app.get("/gallery")
    async def gallery():
        return {"correlation_id": get_correlation_id()}

    @app.get("/healthcheck")
    async def healthcheck():
        return {"status": "healthy"}

    @app.post("/generate")
    async def generate():
        return {"success": True}

    @app.get("/errors/auth")
    async def auth_error():
        raise AuthenticationError("Sign in required")

    @app.get("/errors/validation")
    async def validation_error():
        raise ValidationError("personName", "", "Person name is required")

    @app.get("/errors/missing")
    async def missing():
        raise ItemNotFoundError("item-9")

    @app.get("/errors/http")
    async def http_error():
        raise HTTPException(status_code=403, detail="Forbidden")

    @app.get("/errors/unexpected")
    async def unexpected():
        raise RuntimeError("Something went wrong")

    return app


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


class TestCorrelationMiddleware:
    def test_generates_id(self, client):
        response = client.get("/gallery")

        corr_id = response.headers["X-Correlation-ID"]
        assert corr_id
        assert response.json()["correlation_id"] == corr_id

    def test_preserves_existing_id(self, client):
        response = client.get("/gallery", headers={"X-Correlation-ID": "existing-id"})

        assert response.headers["X-Correlation-ID"] == "existing-id"
        assert response.json()["correlation_id"] == "existing-id"

    def test_ids_differ_between_requests(self, client):
        first = client.get("/gallery").headers["X-Correlation-ID"]
        second = client.get("/gallery").headers["X-Correlation-ID"]
        assert first != second


class TestErrorResponses:
    """Test the {"error": ..., "code": ...} body shape."""

    def test_authentication_error(self, client):
        response = client.get("/errors/auth", headers={"X-Correlation-ID": "c-1"})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json() == {
            "error": "Authentication failed: Sign in required",
            "code": "AUTHENTICATION_ERROR",
            "correlation_id": "c-1",
        }

    def test_validation_error(self, client):
        response = client.get("/errors/validation")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_not_found(self, client):
        response = client.get("/errors/missing")

        assert response.status_code == 404
        assert response.json()["code"] == "ITEM_NOT_FOUND"

    def test_http_exception(self, client):
        response = client.get("/errors/http")

        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"
        assert response.json()["code"] == "HTTP_403"

    def test_unknown_route(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.json()["code"] == "HTTP_404"

    def test_unexpected_error(self, client):
        response = client.get("/errors/unexpected")

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Internal server error"
        assert data["code"] == "INTERNAL_ERROR"


class TestRequestValidationMiddleware:
    def test_rejects_large_body(self, client):
        response = client.post(
            "/generate", content=b"x" * 2048, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 413
        assert response.json()["code"] == "REQUEST_TOO_LARGE"

    def test_rejects_wrong_content_type(self, client):
        response = client.post("/generate", content=b"a=b", headers={"Content-Type": "text/plain"})

        assert response.status_code == 415

    def test_accepts_json(self, client):
        response = client.post("/generate", json={})
        assert response.status_code == 200


class TestResponseHeaders:
    def test_cache_control_on_api_paths(self, client):
        assert client.get("/gallery").headers["Cache-Control"] == "no-store, must-revalidate"

    def test_no_cache_control_elsewhere(self, client):
        assert "Cache-Control" not in client.get("/healthcheck").headers

    def test_security_headers(self, client):
        response = client.get("/healthcheck")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_process_time_and_metrics(self, client):
        collector = init_metrics_collector()

        response = client.get("/healthcheck")

        assert float(response.headers["X-Process-Time"]) >= 0
        assert collector.get_stats()["requests"]["total"] == 1
