"""
Onboarding wizard.

A linear sequence of steps; each step has a validity predicate that gates
moving forward. Setting the password cannot be undone, so once it is done
the wizard never navigates back onto it. Drafts are kept per user in the
`onboarding` collection until the wizard is completed.
"""
from typing import Optional

from bson import Binary
from pymongo.database import Database
from pymongo.errors import PyMongoError

import academics
from database import BackendError, ONBOARDING
from logger import get_logger
from profile_service import replace_experiences, update_contacts, update_profile
from schemas import (
    OnboardingAcademics,
    OnboardingContacts,
    OnboardingCourse,
    OnboardingData,
    OnboardingIdentity,
    OnboardingPhoto,
)
from storage import AvatarBucket, validate_image

logger = get_logger(__name__)

STEPS = ("password", "identity", "academics", "photo", "contacts")
IRREVERSIBLE_STEPS = frozenset({"password"})


class OnboardingWizard:
    def __init__(
        self,
        user_id: str,
        data: Optional[OnboardingData] = None,
        step: int = 0,
        password_set: bool = False,
        photo: Optional[OnboardingPhoto] = None,
    ):
        self.user_id = user_id
        self.data = data or OnboardingData()
        self.step = step
        self.password_set = password_set
        self.photo = photo

    @classmethod
    def start(cls, user_id: str, has_password: bool) -> "OnboardingWizard":
        """New wizard; accounts that already have a password skip that step."""
        wizard = cls(user_id, password_set=has_password)
        if has_password:
            wizard.step = STEPS.index("password") + 1
        return wizard

    # Navigation

    @property
    def step_name(self) -> str:
        return STEPS[self.step]

    def is_step_valid(self, name: str) -> bool:
        if name == "password":
            return self.password_set
        if name == "identity":
            identity = self.data.identity
            return identity.first_name.strip() != "" and identity.last_name.strip() != ""
        if name == "academics":
            return self.data.academics.current_degree.strip() in academics.ALL_DEGREES
        # photo and contacts are optional
        return True

    def can_go_next(self) -> bool:
        return self.is_step_valid(self.step_name)

    def _first_reachable_step(self) -> int:
        floor = 0
        for index, name in enumerate(STEPS):
            if name in IRREVERSIBLE_STEPS and self.is_step_valid(name):
                floor = index + 1
        return floor

    def can_go_back(self) -> bool:
        return self.step > 0 and self.step - 1 >= self._first_reachable_step()

    def next(self) -> bool:
        if self.can_go_next() and self.step < len(STEPS) - 1:
            self.step += 1
            return True
        return False

    def back(self) -> bool:
        if self.can_go_back():
            self.step -= 1
            return True
        return False

    def mark_password_set(self) -> None:
        self.password_set = True
        if self.step_name == "password":
            self.next()

    # Editing

    def update_identity(self, updates: dict) -> None:
        self.data.identity = OnboardingIdentity(**{**self.data.identity.model_dump(), **updates})

    def update_academics(self, updates: dict) -> None:
        merged = OnboardingAcademics(**{**self.data.academics.model_dump(), **updates})
        current_degree = academics.validate_current_degree(merged.current_degree)
        self.data.academics = merged.model_copy(update={"current_degree": current_degree})

    def update_contacts(self, updates: dict) -> None:
        self.data.contacts = OnboardingContacts(**{**self.data.contacts.model_dump(), **updates})

    def add_other_degree(self, degree: str) -> None:
        self.data.academics = academics.add_other_degree(self.data.academics, degree)

    def remove_other_degree(self, degree: str) -> None:
        self.data.academics = academics.remove_other_degree(self.data.academics, degree)

    def add_course(self, course: OnboardingCourse) -> None:
        self.data.academics = academics.add_course(self.data.academics, course)

    def remove_course(self, index: int) -> None:
        self.data.academics = academics.remove_course(self.data.academics, index)

    def set_photo(self, filename: str, content_type: str, data: bytes) -> None:
        validate_image(content_type, len(data))
        self.photo = OnboardingPhoto(filename=filename, content_type=content_type, data=data)

    def clear_photo(self) -> None:
        self.photo = None

    # Submission

    def complete(self, db: Database, bucket: AvatarBucket) -> None:
        """
        Write the collected data in order: avatar (when a photo is pending),
        profile, contacts, then experiences (delete all, re-insert).

        Raises ValueError when the wizard is not ready. A BackendError from
        any write propagates as-is; writes that already succeeded stay.
        """
        if self.step != len(STEPS) - 1:
            raise ValueError("Finish the remaining steps first")
        for name in ("password", "identity", "academics"):
            if not self.is_step_valid(name):
                raise ValueError(f"The {name} step is incomplete")

        identity = self.data.identity
        contacts = self.data.contacts

        avatar_url = None
        if self.photo is not None:
            avatar_url = bucket.upload(
                self.user_id, self.photo.filename, self.photo.content_type, self.photo.data
            )

        update_profile(db, self.user_id, {
            "first_name": identity.first_name.strip(),
            "last_name": identity.last_name.strip(),
            "current_degree": self.data.academics.current_degree,
            "avatar_url": avatar_url,
            "onboarding_completed": True,
        })

        update_contacts(db, self.user_id, {
            "phone": contacts.phone.strip() or None,
            "linkedin_url": contacts.linkedin_url.strip() or None,
            "instagram": contacts.instagram.strip() or None,
            "visibility": contacts.visibility,
        })

        replace_experiences(db, self.user_id, academics.build_experience_rows(self.data.academics))
        logger.info(f"Onboarding completed for {self.user_id}")

    # Serialization

    def summary(self) -> dict:
        return {
            "step": self.step,
            "step_name": self.step_name,
            "steps": list(STEPS),
            "password_set": self.password_set,
            "can_go_next": self.can_go_next(),
            "can_go_back": self.can_go_back(),
            "is_last_step": self.step == len(STEPS) - 1,
            "data": self.data.model_dump(),
            "available_degrees": academics.available_degrees(self.data.academics),
            "photo": None if self.photo is None else {
                "filename": self.photo.filename,
                "content_type": self.photo.content_type,
                "size": len(self.photo.data),
            },
        }

    def to_document(self) -> dict:
        return {
            "user_id": self.user_id,
            "step": self.step,
            "password_set": self.password_set,
            "data": self.data.model_dump(),
            "photo": None if self.photo is None else {
                "filename": self.photo.filename,
                "content_type": self.photo.content_type,
                "data": Binary(self.photo.data),
            },
        }

    @classmethod
    def from_document(cls, doc: dict) -> "OnboardingWizard":
        photo = None
        if doc.get("photo"):
            photo = OnboardingPhoto(
                filename=doc["photo"]["filename"],
                content_type=doc["photo"]["content_type"],
                data=bytes(doc["photo"]["data"]),
            )
        return cls(
            doc["user_id"],
            data=OnboardingData(**doc.get("data", {})),
            step=doc.get("step", 0),
            password_set=doc.get("password_set", False),
            photo=photo,
        )


# Drafts

def load_wizard(db: Database, user_id: str, has_password: bool) -> OnboardingWizard:
    try:
        doc = db[ONBOARDING].find_one({"user_id": user_id})
    except PyMongoError as e:
        logger.error(f"load_wizard error: {e}")
        doc = None
    if doc:
        wizard = OnboardingWizard.from_document(doc)
        if has_password and not wizard.password_set:
            wizard.mark_password_set()
        return wizard
    return OnboardingWizard.start(user_id, has_password)


def save_wizard(db: Database, wizard: OnboardingWizard) -> None:
    try:
        db[ONBOARDING].replace_one({"user_id": wizard.user_id}, wizard.to_document(), upsert=True)
    except PyMongoError as e:
        logger.error(f"save_wizard error: {e}")
        raise BackendError(str(e)) from e


def delete_draft(db: Database, user_id: str) -> None:
    try:
        db[ONBOARDING].delete_one({"user_id": user_id})
    except PyMongoError as e:
        logger.error(f"delete_draft error: {e}")
        raise BackendError(str(e)) from e
