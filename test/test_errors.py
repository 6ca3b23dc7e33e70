from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from api.errors import GENERIC_MESSAGE, register_exception_handlers
from rag_chat.exception.custom_exception import (
    ERROR_CODES,
    AuthenticationError,
    NotFoundError,
    RagChatException,
)


class Payload(BaseModel):
    count: int


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/known")
    async def known():
        raise RagChatException("File exceeds limit", 413, ERROR_CODES["FILE_TOO_LARGE"])

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Document not found", ERROR_CODES["DOCUMENT_NOT_FOUND"])

    @app.get("/private")
    async def private():
        raise AuthenticationError()

    @app.get("/crash")
    async def crash():
        raise ValueError("db password is hunter2")

    @app.post("/validate")
    async def validate(body: Payload):
        return body

    return TestClient(app, raise_server_exceptions=False)


def test_known_error_keeps_status_and_code(client):
    r = client.get("/known")
    assert r.status_code == 413
    assert r.json() == {
        "success": False,
        "error": {"message": "File exceeds limit", "code": ERROR_CODES["FILE_TOO_LARGE"]},
    }


def test_not_found_error(client):
    r = client.get("/missing")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == ERROR_CODES["DOCUMENT_NOT_FOUND"]


def test_authentication_error(client):
    r = client.get("/private")
    assert r.status_code == 401
    assert r.json()["error"] == {
        "message": "Authentication required",
        "code": ERROR_CODES["UNAUTHORIZED"],
    }


def test_validation_error_is_400(client):
    r = client.post("/validate", json={"count": "many"})
    assert r.status_code == 400
    body = r.json()
    assert body["error"]["code"] == ERROR_CODES["VALIDATION_ERROR"]
    assert body["error"]["message"].startswith("body.count:")


def test_unknown_route_is_404(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == ERROR_CODES["NOT_FOUND"]


def test_unexpected_error_detail_shown_outside_production(client):
    with patch("api.errors.get_env", return_value=SimpleNamespace(is_production=False)):
        r = client.get("/crash")
    assert r.status_code == 500
    assert r.json()["error"] == {
        "message": "db password is hunter2",
        "code": ERROR_CODES["INTERNAL_ERROR"],
    }


def test_unexpected_error_hidden_in_production(client):
    with patch("api.errors.get_env", return_value=SimpleNamespace(is_production=True)):
        r = client.get("/crash")
    assert r.status_code == 500
    assert r.json()["error"]["message"] == GENERIC_MESSAGE


def test_health():
    from api.main import create_app

    r = TestClient(create_app(use_lifespan=False)).get("/health")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "ok"
