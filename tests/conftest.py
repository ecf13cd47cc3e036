from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from smart_import.auth_security import create_access_token
from smart_import.db import init_db
from smart_import.gateway import SqlGateway
from smart_import.orchestrator import ImportOrchestrator
from smart_import.seed import seed_base

PRACTITIONER_USER_ID = "practitioner-user"


@pytest.fixture
def session_factory():
    # SQLite in memoria condiviso tra thread (TestClient esegue le route in un threadpool)
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def gateway(session_factory) -> SqlGateway:
    return SqlGateway(session_factory)


@pytest.fixture
def practitioner_id(session_factory) -> str:
    return seed_base(session_factory, user_id=PRACTITIONER_USER_ID)


@pytest.fixture
def orchestrator(gateway) -> ImportOrchestrator:
    return ImportOrchestrator(gateway)


@pytest.fixture
def auth_headers(practitioner_id) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(PRACTITIONER_USER_ID)}"}


@pytest.fixture
def make_client():
    from smart_import.api_main import app, get_gateway

    def _make(gw, **kwargs) -> TestClient:
        app.dependency_overrides[get_gateway] = lambda: gw
        return TestClient(app, **kwargs)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client, gateway) -> TestClient:
    return make_client(gateway)
