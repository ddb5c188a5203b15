"""Tests for the global exception handler and structured logging helpers."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError

from core.error_handler import (
    StructuredLogger,
    _build_error_response,
    register_exception_handlers,
)
from core.exceptions import (
    ConversationNotFoundError,
    MessagePersistenceError,
    OutcomePersistenceError,
)
from core.middleware import CORRELATION_HEADER, CorrelationIdMiddleware


class Prompt(BaseModel):
    content: str = Field(min_length=1)


def build_test_app(env: str) -> TestClient:
    app = FastAPI()
    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app)

    @app.post("/prompts")
    async def create_prompt(prompt: Prompt):  # pragma: no cover - via client
        return {"ok": True}

    @app.get("/missing")
    async def missing():
        raise ConversationNotFoundError("no such conversation")

    @app.get("/prompt-not-saved")
    async def prompt_not_saved():
        raise MessagePersistenceError("db down")

    @app.get("/outcome-not-saved")
    async def outcome_not_saved():
        raise OutcomePersistenceError("db down")

    @app.get("/db")
    async def db():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    @app.get("/teapot")
    async def teapot():
        raise HTTPException(status_code=418, detail="short and stout")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("Exploded with secret=should_not_leak")

    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def environment():
    with patch("core.error_handler.get_settings") as mocked:

        def use(env: str) -> TestClient:
            mocked.return_value.ENVIRONMENT = env
            return build_test_app(env)

        yield use


def test_not_found_maps_to_404(environment) -> None:
    client = environment("development")
    response = client.get("/missing", headers={CORRELATION_HEADER: "cid-1"})

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "The requested conversation was not found"
    assert body["error"] == {"correlation_id": "cid-1", "type": "domain_error"}
    assert response.headers[CORRELATION_HEADER] == "cid-1"


@pytest.mark.parametrize(
    ("path", "message"),
    [
        ("/prompt-not-saved", MessagePersistenceError.user_message),
        ("/outcome-not-saved", OutcomePersistenceError.user_message),
    ],
)
def test_persistence_errors_are_503(environment, path: str, message: str) -> None:
    response = environment("production").get(path)

    assert response.status_code == 503
    assert response.json()["message"] == message


def test_database_error_is_503(environment) -> None:
    response = environment("development").get("/db")

    assert response.status_code == 503
    assert response.json()["error"]["type"] == "database_error"


def test_validation_errors_listed_outside_production(environment) -> None:
    response = environment("development").post("/prompts", json={"content": ""})

    assert response.status_code == 422
    errors = response.json()["error"]["validation_errors"]
    assert errors[0]["loc"] == ["body", "content"]


def test_validation_errors_hidden_in_production(environment) -> None:
    response = environment("production").post("/prompts", json={"content": ""})

    assert response.status_code == 422
    assert "validation_errors" not in response.json()["error"]


def test_http_exception_keeps_status(environment) -> None:
    response = environment("development").get("/teapot")

    assert response.status_code == 418
    assert response.json()["error"]["details"] == {"detail": "short and stout"}


def test_unhandled_error_does_not_leak_in_production(environment) -> None:
    response = environment("production").get("/boom")

    assert response.status_code == 500
    text = response.text
    assert "should_not_leak" not in text
    assert response.json()["error"]["type"] == "internal_server_error"


def test_build_error_response_development_includes_optional_fields() -> None:
    resp = _build_error_response(
        correlation_id="cid",
        error_type="internal_server_error",
        message="An internal error occurred",
        environment="development",
        details={"debug": True},
        traceback_str="trace",
        exception_type="ValueError",
        status_code=500,
    )
    body = json.loads(resp.body)

    assert body["error"]["details"] == {"debug": True}
    assert body["error"]["traceback"] == "trace"
    assert body["error"]["exception_type"] == "ValueError"


def test_structured_logger_redacts_conversation_text() -> None:
    logger = StructuredLogger("tests")

    sanitized = logger._sanitize_data(
        {
            "prompt": "my invoice number is INV-0099",
            "AUTOMATION_API_KEY": "placeholder",  # pragma: allowlist secret
            "nested": {"chat_response": "Paid", "status_code": 502},
            "events_seen": 4,
        }
    )

    assert sanitized["prompt"] == "[REDACTED]"
    assert sanitized["AUTOMATION_API_KEY"] == "[REDACTED]"
    assert sanitized["nested"] == {"chat_response": "[REDACTED]", "status_code": 502}
    assert sanitized["events_seen"] == 4
