"""
Shared test fixtures.

Provides an in-memory MongoDB (mongomock), a TestClient wired to it, and
helpers to create students and bearer headers.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import create_access_token, ensure_account
from database import get_db
from profile_service import insert_experiences, update_profile

DOMAIN = "@studbocconi.it"


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    return mongomock.MongoClient()["bcontact_test"]


@pytest.fixture
def client(db):
    """TestClient whose requests use the in-memory database."""
    main.app.dependency_overrides[get_db] = lambda: db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_student(db):
    """
    Factory creating an account with profile fields and experiences.

    Returns the new user id.
    """

    def _make(
        handle: str,
        first_name: str = None,
        last_name: str = None,
        current_degree: str = None,
        onboarded: bool = True,
        experiences: list = None,
    ) -> str:
        user = ensure_account(db, f"{handle}{DOMAIN}")
        user_id = str(user["_id"])
        update_profile(db, user_id, {
            "first_name": first_name if first_name is not None else handle.title(),
            "last_name": last_name if last_name is not None else "Rossi",
            "current_degree": current_degree,
            "onboarding_completed": onboarded,
        })
        insert_experiences(db, user_id, experiences or [])
        return user_id

    return _make


@pytest.fixture
def auth_headers():
    """Factory returning bearer headers for a user id."""

    def _headers(user_id: str) -> dict:
        token = create_access_token({"sub": user_id})
        return {"Authorization": f"Bearer {token}"}

    return _headers
