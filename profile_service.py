"""
Typed wrappers around the profiles, contacts and experiences collections.

Reads that fail are logged and degrade to None / empty lists. Writes that
fail are logged and raised as BackendError.
"""
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import BackendError, CONTACTS, EXPERIENCES, PROFILES
from logger import get_logger
from schemas import Contact, Experience, Profile

logger = get_logger(__name__)

EXPERIENCE_ID_CAP = 200


def _experience_from_doc(doc: dict) -> Experience:
    doc = {**doc}
    doc["id"] = str(doc.pop("_id")) if doc.get("_id") is not None else None
    return Experience(**doc)


def _profile_from_doc(doc: dict) -> Profile:
    return Profile(**{k: v for k, v in doc.items() if k != "_id"})


def _contact_from_doc(doc: dict) -> Contact:
    return Contact(**{k: v for k, v in doc.items() if k != "_id"})


def _contains(query: str) -> dict:
    return {"$regex": re.escape(query.strip()), "$options": "i"}


# Account rows

def create_account_rows(db: Database, user_id: str, email: str) -> None:
    """Create the empty profile and private contact rows for a new user."""
    try:
        db[PROFILES].insert_one(
            Profile(user_id=user_id, created_at=datetime.now(timezone.utc)).model_dump()
        )
        db[CONTACTS].insert_one(Contact(user_id=user_id, email=email).model_dump())
    except PyMongoError as e:
        logger.error(f"create_account_rows error: {e}")
        raise BackendError(str(e)) from e


# Profile

def fetch_profile(db: Database, user_id: str) -> Optional[Profile]:
    try:
        doc = db[PROFILES].find_one({"user_id": user_id})
    except PyMongoError as e:
        logger.error(f"fetch_profile error: {e}")
        return None
    return _profile_from_doc(doc) if doc else None


def update_profile(db: Database, user_id: str, updates: dict) -> None:
    updates = {k: v for k, v in updates.items() if k not in ("user_id", "created_at")}
    if not updates:
        return
    try:
        db[PROFILES].update_one({"user_id": user_id}, {"$set": updates})
    except PyMongoError as e:
        logger.error(f"update_profile error: {e}")
        raise BackendError(str(e)) from e


# Contacts

def fetch_contacts(db: Database, user_id: str) -> Optional[Contact]:
    try:
        doc = db[CONTACTS].find_one({"user_id": user_id})
    except PyMongoError as e:
        logger.error(f"fetch_contacts error: {e}")
        return None
    return _contact_from_doc(doc) if doc else None


def update_contacts(db: Database, user_id: str, updates: dict) -> None:
    updates = {k: v for k, v in updates.items() if k != "user_id"}
    if not updates:
        return
    try:
        db[CONTACTS].update_one({"user_id": user_id}, {"$set": updates})
    except PyMongoError as e:
        logger.error(f"update_contacts error: {e}")
        raise BackendError(str(e)) from e


# Experiences

def fetch_experiences(db: Database, user_id: str) -> List[Experience]:
    try:
        docs = list(db[EXPERIENCES].find({"user_id": user_id}).sort("_id", ASCENDING))
    except PyMongoError as e:
        logger.error(f"fetch_experiences error: {e}")
        return []
    return [_experience_from_doc(d) for d in docs]


def delete_experiences(db: Database, user_id: str) -> None:
    try:
        db[EXPERIENCES].delete_many({"user_id": user_id})
    except PyMongoError as e:
        logger.error(f"delete_experiences error: {e}")
        raise BackendError(str(e)) from e


def insert_experiences(db: Database, user_id: str, items: List[dict]) -> None:
    if not items:
        return
    rows = [{**item, "user_id": user_id} for item in items]
    try:
        db[EXPERIENCES].insert_many(rows)
    except PyMongoError as e:
        logger.error(f"insert_experiences error: {e}")
        raise BackendError(str(e)) from e


def replace_experiences(db: Database, user_id: str, items: List[dict]) -> None:
    """Delete every experience of the user, then insert `items`. Not atomic."""
    delete_experiences(db, user_id)
    insert_experiences(db, user_id, items)


# Search

def _visible_profiles(current_user_id: str) -> dict:
    return {"onboarding_completed": True, "user_id": {"$ne": current_user_id}}


def search_profiles(
    db: Database, query: str, current_user_id: str, limit: int, offset: int
) -> List[Profile]:
    """Onboarded profiles whose name or current degree contains `query`."""
    pattern = _contains(query)
    criteria = {
        **_visible_profiles(current_user_id),
        "$or": [
            {"first_name": pattern},
            {"last_name": pattern},
            {"current_degree": pattern},
        ],
    }
    try:
        docs = list(
            db[PROFILES]
            .find(criteria)
            .sort([("first_name", ASCENDING), ("last_name", ASCENDING)])
            .skip(offset)
            .limit(limit)
        )
    except PyMongoError as e:
        logger.error(f"search_profiles error: {e}")
        return []
    return [_profile_from_doc(d) for d in docs]


def browse_profiles(db: Database, current_user_id: str, limit: int, offset: int) -> List[Profile]:
    try:
        docs = list(
            db[PROFILES]
            .find(_visible_profiles(current_user_id))
            .sort("created_at", DESCENDING)
            .skip(offset)
            .limit(limit)
        )
    except PyMongoError as e:
        logger.error(f"browse_profiles error: {e}")
        return []
    return [_profile_from_doc(d) for d in docs]


def search_experience_users(
    db: Database, query: str, exp_type: str, current_user_id: str
) -> List[str]:
    """
    Owner ids of experiences of `exp_type` matching `query`.

    A blank query matches every experience of that type. Ids come back
    distinct, in first-seen order, capped at EXPERIENCE_ID_CAP.
    """
    criteria = {"exp_type": exp_type, "user_id": {"$ne": current_user_id}}
    if query.strip():
        pattern = _contains(query)
        criteria["$or"] = [
            {"organization": pattern},
            {"role": pattern},
            {"code": pattern},
        ]

    user_ids: List[str] = []
    seen = set()
    try:
        for doc in db[EXPERIENCES].find(criteria, {"user_id": 1}).sort("_id", ASCENDING):
            uid = doc["user_id"]
            if uid in seen:
                continue
            seen.add(uid)
            user_ids.append(uid)
            if len(user_ids) >= EXPERIENCE_ID_CAP:
                break
    except PyMongoError as e:
        logger.error(f"search_experience_users error: {e}")
        return []
    return user_ids


def fetch_profiles_by_ids(
    db: Database, user_ids: List[str], current_user_id: str
) -> List[Profile]:
    """Onboarded profiles for `user_ids`, in the order of `user_ids`."""
    wanted = [uid for uid in user_ids if uid != current_user_id]
    if not wanted:
        return []
    try:
        docs = list(db[PROFILES].find({"user_id": {"$in": wanted}, "onboarding_completed": True}))
    except PyMongoError as e:
        logger.error(f"fetch_profiles_by_ids error: {e}")
        return []
    by_id = {d["user_id"]: _profile_from_doc(d) for d in docs}
    return [by_id[uid] for uid in wanted if uid in by_id]


def fetch_experiences_for_users(db: Database, user_ids: List[str]) -> List[Experience]:
    if not user_ids:
        return []
    try:
        docs = list(db[EXPERIENCES].find({"user_id": {"$in": user_ids}}).sort("_id", ASCENDING))
    except PyMongoError as e:
        logger.error(f"fetch_experiences_for_users error: {e}")
        return []
    return [_experience_from_doc(d) for d in docs]


def group_by_user(experiences: List[Experience]) -> Dict[str, List[Experience]]:
    grouped: Dict[str, List[Experience]] = {}
    for exp in experiences:
        grouped.setdefault(exp.user_id, []).append(exp)
    return grouped
