"""
Pytest configuration for the API tests.

Each test gets a fresh application built over an in-memory mongomock
database and a temporary upload directory, so no MongoDB server is needed.
"""
from typing import Dict, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from context import build_context
from main import create_app

TEST_SECRET = "test-signing-secret-0123456789abcdef-0123456789"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        jwt_secret=TEST_SECRET,
        jwt_exp_min=60,
        bcrypt_rounds=10,
        upload_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def ctx(settings):
    db = mongomock.MongoClient()["campus_portal_test"]
    return build_context(settings, db=db)


@pytest.fixture
def client(ctx):
    with TestClient(create_app(ctx)) as c:
        yield c


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class Accounts:
    """Signs up users through the API and remembers their tokens."""

    def __init__(self, client: TestClient):
        self.client = client
        self._n = 0

    def signup(
        self,
        role: str,
        degree: str = "BCA",
        department: str = "Computer Science",
        email: Optional[str] = None,
        password: str = "secret123",
        name: Optional[str] = None,
    ) -> Dict[str, str]:
        self._n += 1
        email = email or f"{role}{self._n}@campus.edu"
        resp = self.client.post(
            "/api/auth/signup",
            json={
                "email": email,
                "password": password,
                "role": role,
                "name": name or f"{role.title()} {self._n}",
                "degree": degree,
                "department": department,
            },
        )
        assert resp.status_code == 201, resp.text
        token = resp.json()["token"]
        me = self.client.get("/api/user", headers=bearer(token)).json()
        return {"token": token, "id": me["id"], "email": email, "headers": bearer(token)}


@pytest.fixture
def accounts(client) -> Accounts:
    return Accounts(client)
