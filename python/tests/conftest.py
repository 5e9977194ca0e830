"""Pytest configuration and fixtures for aica tests.

Test isolation strategy:
- Every test gets a fresh in-memory SQLite database created from the ORM
  metadata (one shared connection per engine via StaticPool)
- Route tests use FastAPI's TestClient against an app wired to that database
- Client tests run the real RemoteStore against the same app in-process via
  httpx.ASGITransport, so no network is involved
- Argon2id is slow by design; derived keys for the shared test password are
  computed once per session
"""

import os
import sys
from collections.abc import Generator
from pathlib import Path

# Settings require DATABASE_URL; tests never touch a real server database
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from aica.app import add_request_id_middleware, create_app
from aica.client.keys import derive_keys, hash_auth_key
from aica.client.models import DerivedKeys, OrgCredentials
from aica.client.remote import RemoteStore
from aica.config import clear_settings_cache
from aica.db.engine import create_db_engine
from aica.db.models import Base
from aica.db.session import create_session_factory
from tests.helpers import TEST_PASSWORD, TEST_SALT, create_org_via_api


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Settings are cached per process; isolate env changes between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with the full schema."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """A session on the test database for service-level tests."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(session_factory: sessionmaker[Session]) -> FastAPI:
    """App with org auth and request-id middleware on the test database."""
    app = create_app(session_factory=session_factory)
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="session")
def derived_keys() -> DerivedKeys:
    """Keys for TEST_PASSWORD and TEST_SALT, derived once."""
    return derive_keys(TEST_PASSWORD, TEST_SALT)


@pytest.fixture
def org_credentials(client: TestClient, derived_keys: DerivedKeys) -> OrgCredentials:
    """An organization created through the API, with its bearer credentials."""
    token = hash_auth_key(derived_keys.auth_key_material)
    create_org_via_api(client, slug="acme", token=token)
    return OrgCredentials(slug="acme", token=token)


@pytest.fixture
def http_client(app: FastAPI) -> httpx.AsyncClient:
    """httpx AsyncClient that calls the app in-process."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.fixture
def remote(http_client: httpx.AsyncClient) -> RemoteStore:
    return RemoteStore(http_client)
