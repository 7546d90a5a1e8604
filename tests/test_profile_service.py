"""Tests for the table wrappers in profile_service."""

from unittest.mock import MagicMock

import pytest
from pymongo.errors import PyMongoError

import profile_service
from database import BackendError
from profile_service import (
    browse_profiles,
    delete_experiences,
    fetch_contacts,
    fetch_experiences,
    fetch_experiences_for_users,
    fetch_profile,
    fetch_profiles_by_ids,
    group_by_user,
    insert_experiences,
    replace_experiences,
    search_experience_users,
    search_profiles,
    update_contacts,
    update_profile,
)


def course(name, code=None):
    return {"exp_type": "course", "organization": name, "role": None, "level": None,
            "start_date": None, "end_date": None, "semester": None, "code": code}


def exchange(destination):
    return {"exp_type": "exchange", "organization": destination, "role": None, "level": "MSc",
            "start_date": None, "end_date": None, "semester": "1st", "code": None}


@pytest.fixture
def failing_db():
    """A database whose every collection call raises PyMongoError."""
    collection = MagicMock()
    for name in ("find_one", "find", "update_one", "insert_one", "insert_many", "delete_many"):
        getattr(collection, name).side_effect = PyMongoError("connection refused")
    db = MagicMock()
    db.__getitem__.return_value = collection
    return db


class TestAccountRows:
    def test_new_account_has_empty_profile_and_private_contacts(self, db, make_student):
        user_id = make_student("anna", onboarded=False)

        profile = fetch_profile(db, user_id)
        contacts = fetch_contacts(db, user_id)

        assert profile.user_id == user_id
        assert profile.onboarding_completed is False
        assert profile.created_at is not None
        assert contacts.email == "anna@studbocconi.it"
        assert contacts.visibility == "private"
        assert contacts.phone is None


class TestProfileAndContacts:
    def test_update_profile(self, db, make_student):
        user_id = make_student("anna")
        update_profile(db, user_id, {"bio": "Hi", "user_id": "someone-else"})

        profile = fetch_profile(db, user_id)
        assert profile.bio == "Hi"
        assert profile.user_id == user_id

    def test_update_contacts(self, db, make_student):
        user_id = make_student("anna")
        update_contacts(db, user_id, {"phone": "+39 333", "visibility": "all_verified"})

        contacts = fetch_contacts(db, user_id)
        assert contacts.phone == "+39 333"
        assert contacts.visibility == "all_verified"

    def test_missing_rows_are_none(self, db):
        assert fetch_profile(db, "nobody") is None
        assert fetch_contacts(db, "nobody") is None


class TestExperiences:
    def test_insert_and_fetch(self, db, make_student):
        user_id = make_student("anna")
        insert_experiences(db, user_id, [course("Microeconomics", "30001"), exchange("NUS")])

        experiences = fetch_experiences(db, user_id)
        assert [e.organization for e in experiences] == ["Microeconomics", "NUS"]
        assert all(e.id for e in experiences)
        assert all(e.user_id == user_id for e in experiences)

    def test_insert_empty_list_is_noop(self, failing_db):
        insert_experiences(failing_db, "u1", [])

    def test_insert_does_not_mutate_items(self, db, make_student):
        user_id = make_student("anna")
        items = [course("Microeconomics")]
        insert_experiences(db, user_id, items)
        assert items == [course("Microeconomics")]

    def test_replace_drops_previous_rows(self, db, make_student):
        user_id = make_student("anna", experiences=[course("Old course"), exchange("Old place")])
        other_id = make_student("marco", experiences=[course("Kept")])

        replace_experiences(db, user_id, [course("New course")])

        assert [e.organization for e in fetch_experiences(db, user_id)] == ["New course"]
        assert [e.organization for e in fetch_experiences(db, other_id)] == ["Kept"]

    def test_delete_experiences(self, db, make_student):
        user_id = make_student("anna", experiences=[course("Old course")])
        delete_experiences(db, user_id)
        assert fetch_experiences(db, user_id) == []

    def test_group_by_user(self, db, make_student):
        a = make_student("anna", experiences=[course("A1"), course("A2")])
        b = make_student("bruno", experiences=[course("B1")])

        grouped = group_by_user(fetch_experiences_for_users(db, [a, b]))
        assert [e.organization for e in grouped[a]] == ["A1", "A2"]
        assert [e.organization for e in grouped[b]] == ["B1"]

    def test_fetch_for_no_users(self, failing_db):
        assert fetch_experiences_for_users(failing_db, []) == []


class TestSearchQueries:
    def test_search_matches_name_and_degree_case_insensitively(self, db, make_student):
        me = make_student("me", first_name="Giulia")
        make_student("marco", first_name="Marco", current_degree="Finance")
        make_student("anna", first_name="Anna", last_name="Marchetti")
        make_student("luca", first_name="Luca", current_degree="Marketing Management")
        make_student("sara", first_name="Sara")

        found = search_profiles(db, "MAR", me, limit=50, offset=0)

        assert [p.first_name for p in found] == ["Anna", "Luca", "Marco"]

    def test_search_escapes_regex_characters(self, db, make_student):
        me = make_student("me")
        make_student("weird", first_name="A.*B")
        make_student("plain", first_name="AxxB")

        assert [p.first_name for p in search_profiles(db, ".*", me, 50, 0)] == ["A.*B"]

    def test_search_excludes_current_user_and_pending_profiles(self, db, make_student):
        me = make_student("me", first_name="Marco")
        make_student("pending", first_name="Marco", onboarded=False)
        other = make_student("other", first_name="Marco")

        assert [p.user_id for p in search_profiles(db, "marco", me, 50, 0)] == [other]

    def test_search_paging(self, db, make_student):
        me = make_student("me", first_name="Zed")
        for name in ["Ada", "Bea", "Cid", "Dan", "Eva"]:
            make_student(name.lower(), first_name=name, last_name="Test")

        first = search_profiles(db, "test", me, limit=2, offset=0)
        second = search_profiles(db, "test", me, limit=2, offset=2)
        third = search_profiles(db, "test", me, limit=2, offset=4)

        assert [p.first_name for p in first + second + third] == ["Ada", "Bea", "Cid", "Dan", "Eva"]

    def test_browse_excludes_current_user_and_pending_profiles(self, db, make_student):
        me = make_student("me")
        make_student("pending", onboarded=False)
        others = {make_student("anna"), make_student("bruno")}

        assert {p.user_id for p in browse_profiles(db, me, 50, 0)} == others

    def test_experience_users_filters_by_type_and_query(self, db, make_student):
        me = make_student("me", experiences=[course("Microeconomics")])
        a = make_student("anna", experiences=[course("Microeconomics", "30001"), course("Macro")])
        b = make_student("bruno", experiences=[exchange("Microeconomics School")])
        c = make_student("carla", experiences=[course("Accounting", "30001")])

        assert search_experience_users(db, "micro", "course", me) == [a]
        assert search_experience_users(db, "30001", "course", me) == [a, c]
        assert search_experience_users(db, "", "exchange", me) == [b]

    def test_experience_users_are_distinct_and_capped(self, db, make_student, monkeypatch):
        monkeypatch.setattr(profile_service, "EXPERIENCE_ID_CAP", 3)
        me = make_student("me")
        ids = [
            make_student(f"s{i}", experiences=[course("Stats"), course("Stats II")])
            for i in range(5)
        ]

        assert search_experience_users(db, "stats", "course", me) == ids[:3]

    def test_profiles_by_ids_keeps_order_and_filters(self, db, make_student):
        me = make_student("me")
        a = make_student("anna")
        b = make_student("bruno")
        pending = make_student("pending", onboarded=False)

        found = fetch_profiles_by_ids(db, [b, pending, me, a, "missing"], me)
        assert [p.user_id for p in found] == [b, a]

    def test_profiles_by_ids_empty(self, failing_db):
        assert fetch_profiles_by_ids(failing_db, [], "me") == []


class TestBackendFailures:
    def test_reads_degrade(self, failing_db):
        assert fetch_profile(failing_db, "u1") is None
        assert fetch_contacts(failing_db, "u1") is None
        assert fetch_experiences(failing_db, "u1") == []
        assert search_profiles(failing_db, "x", "u1", 50, 0) == []
        assert browse_profiles(failing_db, "u1", 50, 0) == []
        assert search_experience_users(failing_db, "x", "course", "u1") == []
        assert fetch_profiles_by_ids(failing_db, ["u2"], "u1") == []
        assert fetch_experiences_for_users(failing_db, ["u2"]) == []

    def test_writes_raise_backend_error(self, failing_db):
        with pytest.raises(BackendError, match="connection refused"):
            update_profile(failing_db, "u1", {"bio": "x"})
        with pytest.raises(BackendError):
            update_contacts(failing_db, "u1", {"phone": "1"})
        with pytest.raises(BackendError):
            delete_experiences(failing_db, "u1")
        with pytest.raises(BackendError):
            insert_experiences(failing_db, "u1", [course("A")])
