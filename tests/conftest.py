from __future__ import annotations

from typing import Any, Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from boxmgr.api.server import create_app
from boxmgr.auth.security import TokenCodec
from boxmgr.config import Config
from boxmgr.db import connect, init_db

SECRET = "test-signing-secret-0123456789abcdef0123456789abcdef"


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "boxmgr.sqlite"),
        AUTH_SECRET=SECRET,
        AUTH_COOKIE_SECURE=False,
        AUTH_COOKIE_SAMESITE="strict",
        AUTH_ACCEPT_LEGACY_COOKIES=True,
        AUTH_LEGACY_ADMIN_USERNAME="user",
        AUTH_BOOTSTRAP_ADMIN_USERNAME="",
        AUTH_BOOTSTRAP_ADMIN_PASSWORD="",
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def db(cfg: Config) -> str:
    init_db(cfg.DB_DSN)
    return cfg.DB_DSN


@pytest.fixture
def conn(db: str) -> Iterator[Any]:
    with connect(db) as c:
        yield c


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(SECRET, expires_minutes=7 * 24 * 60)


@pytest.fixture
def client(cfg: Config) -> Iterator[TestClient]:
    with TestClient(create_app(cfg)) as c:
        yield c


def login(client: TestClient, username: str, password: str) -> Dict[str, Any]:
    resp = client.post("/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def admin_client(client: TestClient) -> TestClient:
    """Client logged in as the first admin ('root' / 'rootpass1')."""
    assert client.post("/setup", json={"username": "root", "password": "rootpass1"}).status_code == 200
    login(client, "root", "rootpass1")
    return client
