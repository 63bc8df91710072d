"""
Shared fixtures: in-memory database, users, posts and tokens
"""

import os

# Settings are read at import time
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite://"
os.environ["EXPIRATION_SWEEPER_ENABLED"] = "false"
os.environ["TYPING_TIMEOUT_SECONDS"] = "0.2"
os.environ["LOG_TO_FILE"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-marketplace-suite"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from marketplace.auth.jwt_handler import create_access_token
from marketplace.database import SessionLocal, engine
from marketplace.main import create_app
from marketplace.models.base import Base
from marketplace.models.user import User
from marketplace.services.auction_lifecycle import auction_lifecycle
from marketplace.services.events import event_bus
from marketplace.utils.clock import utcnow


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    event_bus.clear()
    yield
    event_bus.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(username: str, **fields) -> User:
        user = User(username=username, email=f"{username}@example.com", created_by="test", **fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def seller(make_user):
    return make_user("seller")


@pytest.fixture
def alice(make_user):
    return make_user("alice", profile_image="https://img.example.com/alice.png")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def make_post(db, seller):
    def _make_post(owner=None, starting_price=10.0, buy_now_price=None, duration=24, ends_in=None, title="Vintage camera"):
        post = auction_lifecycle.create_post(
            db,
            owner or seller,
            title,
            "Film camera in working condition",
            starting_price,
            duration,
            buy_now_price=buy_now_price,
            images=["https://img.example.com/camera.jpg"],
        )
        if ends_in is not None:
            post.auction_end_time = utcnow() + ends_in
            db.commit()
            db.refresh(post)
        return post
    return _make_post


@pytest.fixture
def expired_post(make_post):
    return make_post(ends_in=timedelta(minutes=-5))


@pytest.fixture
def collected_events():
    events = []
    event_bus.subscribe(events.append)
    yield events
    event_bus.unsubscribe(events.append)


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}
    return _auth_headers


@pytest.fixture
def client():
    with TestClient(create_app(enable_sweeper=False)) as test_client:
        yield test_client
