"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.errors import (
    AppError,
    ValidationAppError,
    AuthenticationAppError,
)
from app.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def handler_client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled (server errors rendered, not raised)."""
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_validation_error_returns_400(self, handler_client: TestClient, app_with_handlers: FastAPI):
        """Verify ValidationAppError returns HTTP 400."""
        @app_with_handlers.get("/test-validation")
        async def test_endpoint():
            raise ValidationAppError(
                code="invalid_subject",
                message="Invalid subject identifier format"
            )

        response = handler_client.get("/test-validation")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "invalid_subject"
        assert data["error"]["message"] == "Invalid subject identifier format"
        assert "request_id" in data["error"]

    def test_validation_error_includes_details(self, handler_client: TestClient, app_with_handlers: FastAPI):
        """Verify ValidationAppError includes details when provided."""
        @app_with_handlers.get("/test-validation-details")
        async def test_endpoint():
            raise ValidationAppError(
                code="unknown_category",
                message="Unknown category: 'sticker'",
                details={
                    "category": "sticker",
                    "allowed_categories": ["text", "audio", "global"],
                }
            )

        response = handler_client.get("/test-validation-details")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["details"]["category"] == "sticker"
        assert data["error"]["details"]["allowed_categories"] == ["text", "audio", "global"]

    def test_error_without_details_omits_key(self, handler_client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-no-details")
        async def test_endpoint():
            raise ValidationAppError(code="invalid_payload", message="Request body must be a JSON object")

        data = handler_client.get("/test-no-details").json()

        assert "details" not in data["error"]

    def test_authentication_error_returns_403(self, handler_client: TestClient, app_with_handlers: FastAPI):
        """Verify AuthenticationAppError returns HTTP 403 Forbidden."""
        @app_with_handlers.get("/test-auth")
        async def test_endpoint():
            raise AuthenticationAppError(
                code="invalid_api_key",
                message="Invalid or missing API key"
            )

        response = handler_client.get("/test-auth")

        assert response.status_code == 403
        data = response.json()
        assert data["error"]["code"] == "invalid_api_key"

    def test_base_app_error_returns_400(self, handler_client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-base")
        async def test_endpoint():
            raise AppError(code="store_unknown_backend", message="Unknown counter store backend")

        response = handler_client.get("/test-base")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "store_unknown_backend"

    def test_error_response_format_is_consistent(self, handler_client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        @app_with_handlers.get("/test-format")
        async def test_endpoint():
            raise ValidationAppError(code="test", message="test")

        response = handler_client.get("/test-format")
        data = response.json()

        # Required fields always present
        assert "error" in data
        assert "code" in data["error"]
        assert "message" in data["error"]
        assert "request_id" in data["error"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        """Verify fallback exception handler is registered."""
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_logic(self):
        """Verify general_exception_handler returns correct structure."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: redis connection refused")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        # Original error message should NOT be in response
        assert "redis connection" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        # No traceback indicators
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text

    def test_unexpected_error_in_route_returns_500(self, handler_client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-boom")
        async def test_endpoint():
            raise RuntimeError("boom")

        response = handler_client.get("/test-boom")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_server_error"


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        """Verify setup_exception_handlers properly registers handlers."""
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
