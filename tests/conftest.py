import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("AI_MODE", "mock")

from mealplanner.main import app
from mealplanner.db import Base, get_db
from mealplanner.models import User
from mealplanner.services.auth import issue_token
from mealplanner.services.generator import MealPlanGenerator
from mealplanner.services.job_store import InMemoryJobStore, SqlJobStore
from mealplanner.services.pipeline import JobPipeline, set_pipeline
from mealplanner.settings import settings

# --- Test Database Setup ---

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, 'sqlite')
def compile_jsonb(element, compiler, **kw):
    return "JSON"


SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool  # one shared in-memory database across threads
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Direct database session for setup."""
    session = TestingSessionLocal()
    yield session
    session.close()


# --- Users ---

def make_user(db_session, user_id: str, **fields) -> User:
    user = User(id=user_id, email=f"{user_id}@example.com", **fields)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def user_factory(db_session):
    def _make(user_id: str, **fields) -> User:
        return make_user(db_session, user_id, **fields)
    return _make


@pytest.fixture
def user(db_session):
    """Free-tier user with a fresh generation period."""
    return make_user(
        db_session,
        "11111111-1111-1111-1111-111111111111",
        generation_period_start=datetime.now(timezone.utc) - timedelta(days=1),
    )


@pytest.fixture
def other_user(db_session):
    return make_user(db_session, "22222222-2222-2222-2222-222222222222")


@pytest.fixture
def auth_headers(db_session, user):
    return {"Authorization": f"Bearer {issue_token(db_session, user.id)}"}


@pytest.fixture
def other_auth_headers(db_session, other_user):
    return {"Authorization": f"Bearer {issue_token(db_session, other_user.id)}"}


# --- Pipeline ---

@pytest.fixture
def memory_store():
    return InMemoryJobStore()


@pytest.fixture
def sql_store():
    return SqlJobStore(TestingSessionLocal)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def pipeline(sql_store):
    return JobPipeline(
        store=sql_store,
        generator=MealPlanGenerator(mode="mock"),
        session_factory=TestingSessionLocal,
        generation_timeout=5,
    )


@pytest.fixture
def client(memory_store, monkeypatch):
    """Test client with DB override and a running dispatcher."""
    monkeypatch.setattr(settings, "worker_concurrency", 1)
    set_pipeline(JobPipeline(
        store=memory_store,
        generator=MealPlanGenerator(mode="mock"),
        session_factory=TestingSessionLocal,
        generation_timeout=5,
    ))
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    set_pipeline(None)


@pytest.fixture
def plan_request():
    return {
        "days": 2,
        "mealsPerDay": 3,
        "people": 2,
        "targetCalories": 2100,
        "restrictions": ["Vegetarian"],
        "allergies": ["peanuts"],
    }


import fakeredis
from mealplanner.infra import redis_client


@pytest.fixture(autouse=True)
def mock_redis():
    fake = fakeredis.FakeAsyncRedis(decode_responses=True)
    redis_client.set_redis(fake)
    yield fake
    redis_client.set_redis(None)
