"""
Configuration partagée pour tous les tests.
Override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL,
et fournit des jetons porteurs signés avec la clé de configuration.
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from app.database import get_db
from app.main import app
from app.schemas.auth import Identity, UserMetadata
from app.services.identity_service import create_access_token

ORG_ID = "6f1c2a64-3d0e-4b8a-9a51-0c3f2e7d9b10"
USER_ID = "a3d5e7f9-1b2c-4d6e-8f90-123456789abc"


def make_token(roles=("teacher",), active_role=None, org_id=ORG_ID, user_id=USER_ID, email="kennari@example.com"):
    metadata = UserMetadata(roles=list(roles), active_role=active_role, org_id=org_id)
    return create_access_token(Identity(id=user_id, email=email, metadata=metadata))


def make_headers(**kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


@pytest.fixture
def mock_db():
    return MagicMock()


@pytest.fixture
def client(mock_db):
    """Client HTTP de test avec la BDD mockée."""
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Fabrique d'en-têtes Authorization : auth_headers(roles=("principal",), org_id=...)."""
    return make_headers


@pytest.fixture
def org_uuid():
    return uuid.UUID(ORG_ID)


@pytest.fixture
def user_uuid():
    return uuid.UUID(USER_ID)
