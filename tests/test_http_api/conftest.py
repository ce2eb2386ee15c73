"""Fixtures for HTTP API tests: a live app and request-signing clients."""

from __future__ import annotations

import json
import time
from typing import Any
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from doauth.api.app import create_app
from doauth.api.middleware.auth import sign_request


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class SignedClient:
    """Sends requests signed with one private key."""

    def __init__(self, client: TestClient, private_key: bytes) -> None:
        self._client = client
        self._key = private_key

    def request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        *,
        params: dict[str, str] | None = None,
        signed_at: int | None = None,
    ):
        target = f"{path}?{urlencode(params)}" if params else path
        body = b"" if payload is None else json.dumps(payload).encode()
        headers = sign_request(
            self._key, method, target, body, now_ms=now_ms() if signed_at is None else signed_at
        )
        if payload is not None:
            headers["content-type"] = "application/json"
        return self._client.request(method, target, content=body, headers=headers)

    def get(self, path: str, **kwargs):
        return self.request("GET", path, **kwargs)

    def post(self, path: str, payload: Any = None, **kwargs):
        return self.request("POST", path, payload, **kwargs)

    def delete(self, path: str, **kwargs):
        return self.request("DELETE", path, **kwargs)


@pytest.fixture
def client(app_config):
    """TestClient running the app lifespan (real engine, SQLite file ledger)."""
    with TestClient(create_app(config=app_config)) as test_client:
        yield test_client


@pytest.fixture
def as_owner(client, owner_key) -> SignedClient:
    return SignedClient(client, owner_key)


@pytest.fixture
def as_service(client, service_key) -> SignedClient:
    return SignedClient(client, service_key)


@pytest.fixture
def as_stranger(client, stranger_key) -> SignedClient:
    return SignedClient(client, stranger_key)
