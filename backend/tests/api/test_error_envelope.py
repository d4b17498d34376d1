"""Tests for the structured error envelope handlers."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.errors import api_error, error_body, from_service_error, register_exception_handlers
from app.core.correlation import CorrelationMiddleware
from app.services.exceptions import ComparisonNotFoundError


@pytest.fixture
def error_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(CorrelationMiddleware)
    register_exception_handlers(app)

    @app.get("/converted")
    async def converted() -> None:
        raise from_service_error(ComparisonNotFoundError("cmp-9"))

    @app.get("/unconverted")
    async def unconverted() -> None:
        raise ComparisonNotFoundError("cmp-9")

    @app.get("/plain")
    async def plain() -> None:
        raise api_error(418, "TEAPOT", "short and stout", {"spout": True})

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("kaboom")

    return app


class TestErrorBody:
    def test_correlation_id_is_added_to_details(self) -> None:
        body = error_body("X", "msg", {"a": 1}, correlation_id="cid-1")

        assert body == {
            "error": {"code": "X", "message": "msg", "details": {"a": 1, "correlationId": "cid-1"}}
        }

    def test_caller_details_are_not_mutated(self) -> None:
        details = {"a": 1}

        error_body("X", "msg", details, correlation_id="cid-1")

        assert details == {"a": 1}


class TestHandlers:
    def test_converted_service_error(self, error_app: FastAPI) -> None:
        client = TestClient(error_app)

        response = client.get("/converted", headers={"X-Correlation-ID": "cid-42"})

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "COMPARISON_NOT_FOUND"
        assert error["details"]["correlationId"] == "cid-42"

    def test_unconverted_service_error_keeps_its_status(self, error_app: FastAPI) -> None:
        response = TestClient(error_app).get("/unconverted")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "COMPARISON_NOT_FOUND"

    def test_api_error_details_survive(self, error_app: FastAPI) -> None:
        response = TestClient(error_app).get("/plain")

        assert response.status_code == 418
        assert response.json()["error"]["details"]["spout"] is True

    def test_unhandled_exception_is_internal_error(self, error_app: FastAPI) -> None:
        response = TestClient(error_app, raise_server_exceptions=False).get("/boom")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "kaboom" not in error["message"]
