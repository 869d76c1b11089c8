import os
import tempfile
import pytest
from contextlib import contextmanager
from sqlalchemy import create_engine, event, StaticPool
from sqlalchemy.orm import sessionmaker

os.environ["FINNEST_DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("FINNEST_LOG_DIR", tempfile.mkdtemp(prefix="finnest-logs-"))

from finnest.database import Base, get_db
from finnest import models  # noqa: F401
from finnest.main import app
from finnest.models import User


@contextmanager
def count_commits(db_session):
    """Context manager that counts DB commits."""
    counter = {"count": 0}

    def _after_commit(session):
        counter["count"] += 1

    event.listen(db_session, "after_commit", _after_commit)
    try:
        yield counter
    finally:
        event.remove(db_session, "after_commit", _after_commit)


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def user(db_session):
    u = User(email="learner@example.com", email_verified=True,
             settings_json={"new_per_day": 20, "retention": 0.9, "theme": "system"})
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture
def other_user(db_session):
    u = User(email="other@example.com", email_verified=True,
             settings_json={"new_per_day": 20, "retention": 0.9, "theme": "system"})
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture
def client(db_session):
    from fastapi.testclient import TestClient

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def logged_in(client):
    resp = client.post("/api/auth/login", json={"email": "learner@example.com", "password": "x"})
    assert resp.status_code == 200
    return resp.json()["user_id"]
