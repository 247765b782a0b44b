import os

# Avant tout import de l'app: pas de Redis pendant les tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Any, Dict, Generator
from fastapi.testclient import TestClient

from marketplace.app_setup.factory import create_app
from marketplace.infra.dependencies import AppDependencies
from marketplace.utils.security import get_optional_user

from fakes import FakeAuthClient, FakeGateway, FakeSender, FakeSupabase, seed_catalog

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture()
def db() -> FakeSupabase:
    fake = FakeSupabase()
    seed_catalog(fake)
    return fake

@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()

@pytest.fixture()
def sender() -> FakeSender:
    return FakeSender()

@pytest.fixture()
def deps(db, gateway, sender) -> AppDependencies:
    auth = FakeAuthClient({"good-token": ("user-1", "alice@example.com")})
    return AppDependencies(db=db, gateway=gateway, sender=sender, auth_client=auth)

@pytest.fixture()
def app(deps):
    return create_app(deps=deps)

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture()
def as_user(app):
    """Simule un client authentifié (user-1) sur les endpoints à utilisateur optionnel ou requis."""
    fake_user: Dict[str, Any] = {"id": "user-1", "email": "alice@example.com", "token": "fake-token"}
    app.dependency_overrides[get_optional_user] = lambda: fake_user
    try:
        yield fake_user
    finally:
        app.dependency_overrides.pop(get_optional_user, None)
