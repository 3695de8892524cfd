"""Shared fixtures: every test gets its own LocalStore and fresh rate-limit buckets."""

import os
import sys

import pytest
from httpx import AsyncClient, ASGITransport

_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _ROOT)

from prep import db
from prep.rate_limiter import get_rate_limiter
from prep.store import LocalStore


@pytest.fixture(autouse=True)
def store(tmp_path):
    """Temporary JSON-file store wired into the db layer."""
    local = LocalStore(str(tmp_path / "prep_store.json"))
    db.use_store(local)

    limiter = get_rate_limiter()
    limiter.reset()
    limiter.set_limit("/api/signup", 100, 3600)
    limiter.set_limit("/api/login", 100, 300)
    yield local
    db.use_store(None)


@pytest.fixture
async def client():
    """Async HTTP client for testing."""
    from main import app
    async with AsyncClient(transport=ASGITransport(app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def auth_client(client):
    """Client with a signed-up, logged-in user."""
    res = await client.post("/api/signup", data={
        "username": "maya",
        "password": "secret123",
        "name": "Maya",
        "email": "maya@example.com",
    })
    assert res.status_code == 200
    return client


@pytest.fixture
def full_survey():
    """A complete registration survey answered with each question's first option."""
    from prep.chronotype import SURVEY_QUESTIONS
    return {q["id"]: q["options"][0] for q in SURVEY_QUESTIONS}
