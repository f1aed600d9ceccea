import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from auth import hash_password
from config import Settings
from database import Base
from main import create_app
from models import User


def make_user(session: Session, email: str, name: str = "Test User") -> User:
    user = User(name=name, email=email, password_hash=hash_password("secret123"))
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def alice(session):
    return make_user(session, "alice@example.com", "Alice")


@pytest.fixture
def bob(session):
    return make_user(session, "bob@example.com", "Bob")


@pytest.fixture
def client():
    settings = Settings(
        database_url="sqlite://",
        timezone="UTC",
        secret_key="test-secret",
    )
    app = create_app(settings)
    app.state.store.create_schema()
    with TestClient(app) as test_client:
        yield test_client


def signup(client: TestClient, email: str, name: str = "Test User") -> dict:
    resp = client.post(
        "/api/auth/signup",
        json={"name": name, "email": email, "password": "secret123"},
    )
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}
