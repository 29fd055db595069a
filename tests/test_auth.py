from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from salesflow.core.config import get_settings
from salesflow.main import app


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    get_settings.cache_clear()
    app.dependency_overrides.clear()
    with TestClient(app) as test_client:
        yield test_client
    get_settings.cache_clear()


def _token(claims: dict[str, object], secret: str = "replace-me") -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def test_missing_token_is_anonymous(client: TestClient) -> None:
    assert client.get("/me").json() == {"sub": "anonymous", "roles": ["guest"]}


def test_roles_claim_as_list_or_string(client: TestClient) -> None:
    as_list = client.get("/me", headers={"Authorization": f"Bearer {_token({'sub': 'u1', 'roles': ['billing']})}"})
    as_string = client.get(
        "/me",
        headers={"Authorization": f"bearer {_token({'sub': 'u2', 'roles': 'sales.rep sales.manager'})}"},
    )

    assert as_list.json() == {"sub": "u1", "roles": ["billing"]}
    assert as_string.json() == {"sub": "u2", "roles": ["sales.rep", "sales.manager"]}


def test_missing_roles_claim_gets_default_role(client: TestClient) -> None:
    response = client.get("/me", headers={"Authorization": f"Bearer {_token({'sub': 'u3'})}"})

    assert response.json() == {"sub": "u3", "roles": ["sales.rep"]}


def test_bad_signature_is_anonymous(client: TestClient) -> None:
    token = _token({"sub": "intruder", "roles": ["sales.admin"]}, secret="not-the-secret")

    response = client.get("/me", headers={"Authorization": f"Bearer {token}"})

    assert response.json()["sub"] == "anonymous"
