"""
MongoDB access for the bcontact API.

`db` is None when no DATABASE_URL is configured; request handlers obtain the
handle through the `get_db` dependency so tests can substitute their own.
"""
from fastapi import HTTPException
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_URL, DATABASE_NAME
from logger import get_logger

logger = get_logger(__name__)

PROFILES = "profiles"
CONTACTS = "contacts"
EXPERIENCES = "experiences"
USERS = "users"
AVATARS = "avatars"
ONBOARDING = "onboarding"


class BackendError(Exception):
    """A write against the database failed; str(err) is safe to show users."""


client = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
    logger.info(f"MongoDB client configured for database '{DATABASE_NAME}'")
else:
    logger.warning("DATABASE_URL not set; database is not configured")


def get_db() -> Database:
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db
