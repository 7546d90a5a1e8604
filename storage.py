"""
Avatar image bucket.

Objects are keyed "<user_id>/avatar.<ext>" and overwritten in place on every
upload. The bytes live in the `avatars` collection and are served back by
the API under /api/storage/avatars/.
"""
from datetime import datetime, timezone
from typing import Optional, Tuple

from bson import Binary
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import PUBLIC_API_URL
from database import AVATARS, BackendError
from logger import get_logger

logger = get_logger(__name__)

MAX_AVATAR_BYTES = 5 * 1024 * 1024


def validate_image(content_type: Optional[str], size: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise ValueError("Only image files are allowed")
    if size > MAX_AVATAR_BYTES:
        raise ValueError("Image must be 5 MB or smaller")


def avatar_path(user_id: str, filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "img"
    return f"{user_id}/avatar.{ext}"


class AvatarBucket:
    def __init__(self, db: Database):
        self.collection = db[AVATARS]

    def public_url(self, path: str) -> str:
        return f"{PUBLIC_API_URL}/api/storage/avatars/{path}"

    def upload(self, user_id: str, filename: str, content_type: str, data: bytes) -> str:
        """Store the avatar, replacing any previous object at the same key, and return its URL."""
        path = avatar_path(user_id, filename)
        try:
            self.collection.replace_one(
                {"_id": path},
                {
                    "_id": path,
                    "user_id": user_id,
                    "content_type": content_type,
                    "data": Binary(data),
                    "updated_at": datetime.now(timezone.utc),
                },
                upsert=True,
            )
        except PyMongoError as e:
            logger.error(f"Avatar upload failed for {path}: {e}")
            raise BackendError(str(e)) from e
        logger.info(f"Uploaded avatar {path} ({len(data)} bytes)")
        return self.public_url(path)

    def download(self, path: str) -> Optional[Tuple[bytes, str]]:
        try:
            doc = self.collection.find_one({"_id": path})
        except PyMongoError as e:
            logger.error(f"Avatar download failed for {path}: {e}")
            return None
        if not doc:
            return None
        return bytes(doc["data"]), doc["content_type"]
