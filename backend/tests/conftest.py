from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.main import app, get_db
from backend.models import Base, User, Video
from backend.security import hash_password

# In-memory SQLite shared across threads for TestClient
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def client(db_session):
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
def make_user(db_session):
    """Insert a user row directly, bypassing the registration handler."""
    counter = {"n": 0}

    def _make(username=None, email=None, password="secret123", **extra):
        counter["n"] += 1
        n = counter["n"]
        now = datetime.utcnow()
        user = User(
            username=username or f"user{n}",
            email=email or f"user{n}@example.com",
            password_hash=hash_password(password),
            created_at=now,
            updated_at=now,
            **extra,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make

@pytest.fixture
def make_video(db_session):
    def _make(user_id, title="Clip", created_at=None, **extra):
        when = created_at or datetime.utcnow()
        video = Video(
            user_id=user_id,
            title=title,
            video_url=extra.pop("video_url", "https://example.com/video.mp4"),
            duration=extra.pop("duration", 30),
            created_at=when,
            updated_at=when,
            **extra,
        )
        db_session.add(video)
        db_session.commit()
        db_session.refresh(video)
        return video
    return _make
