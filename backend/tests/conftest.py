"""
Shared fixtures: an isolated in-memory SQLite database per test, seeded
provider and back-office accounts, and a FastAPI client bound to them.
"""
import os

# Must be set before agency_portal is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATION_SEND_DELAY_S", "0")

from typing import Iterator
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_portal.database import Base, get_db
from agency_portal.models.db_models import EmployeeDB, UserDB, UserRole


@pytest.fixture(scope="function")
def db_engine():
    """Provide an isolated in-memory SQLite database for each test."""
    engine = sa.create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Iterator[Session]:
    """Yield a SQLAlchemy session tied to the in-memory database."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider(db_session) -> EmployeeDB:
    employee = EmployeeDB(
        id=str(uuid4()),
        first_name="Sarah",
        last_name="Jenkins",
        email="sarah.jenkins@example.com",
        local_authority="Bristol City Council",
        service_type="Early Years",
        registration_ref="RK-2024-0117",
        address_line1="14 Oak Lane",
        town_city="Bristol",
        postcode="BS1 4TH",
    )
    db_session.add(employee)
    db_session.commit()
    return employee


@pytest.fixture
def supervisor(db_session) -> UserDB:
    user = UserDB(
        id=str(uuid4()),
        email="jane.director@readykids.example",
        username="jdirector",
        password_hash="not-used",
        full_name="Jane Director",
        job_title="Head of Safeguarding",
        role=UserRole.SUPERVISOR.value,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def operator(db_session) -> UserDB:
    from agency_portal.auth import hash_password

    user = UserDB(
        id=str(uuid4()),
        email="operator@readykids.co.uk",
        username="operator",
        password_hash=hash_password("operator-password"),
        full_name="Olivia Operator",
        job_title="Compliance Officer",
        role=UserRole.OPERATOR.value,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def invoker() -> MagicMock:
    """Stand-in for the server function invoker; succeeds unless told otherwise."""
    mock = MagicMock()
    mock.invoke.return_value = {"success": True}
    return mock


@pytest.fixture
def client(db_session, invoker) -> Iterator[TestClient]:
    """FastAPI test client bound to the in-memory database and the mock invoker."""
    from agency_portal.main import app
    from agency_portal.routers.enforcement import get_function_invoker

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_function_invoker] = lambda: invoker
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(operator) -> dict:
    from agency_portal.auth import issue_token

    token = issue_token(operator)
    return {"Authorization": f"Bearer {token}"}
