"""
Sign-in for bcontact: bcrypt password hashes, signed JWTs for sessions and
for the short-lived links (magic link, password recovery) sent by email.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    APP_URL,
    JWT_SECRET,
    LINK_TOKEN_EXPIRE_MINUTES,
    UNIVERSITY_DOMAIN,
)
from database import BackendError, USERS, get_db
from logger import get_logger
from profile_service import create_account_rows, fetch_profile
from schemas import UserAccount

logger = get_logger(__name__)

ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 8

PURPOSE_ACCESS = "access"
PURPOSE_MAGIC_LINK = "magic_link"
PURPOSE_RECOVERY = "recovery"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class TokenData(BaseModel):
    user_id: Optional[str] = None
    purpose: Optional[str] = None


# Helpers

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_university_email(email: str) -> str:
    """Return the normalized email, or raise ValueError for other domains."""
    email = normalize_email(email)
    if not email:
        raise ValueError("Email is required")
    if not email.endswith(UNIVERSITY_DOMAIN):
        raise ValueError(f"Only {UNIVERSITY_DOMAIN} emails are allowed")
    return email


def validate_new_password(password: str, confirm: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if password != confirm:
        raise ValueError("Passwords do not match")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    to_encode.setdefault("purpose", PURPOSE_ACCESS)
    encoded_jwt = jwt.encode(to_encode, JWT_SECRET, algorithm=ALGORITHM)
    return encoded_jwt


def create_link_token(user_id: str, email: str, purpose: str) -> str:
    return create_access_token(
        {"sub": user_id, "email": email, "purpose": purpose},
        expires_delta=timedelta(minutes=LINK_TOKEN_EXPIRE_MINUTES),
    )


def decode_token(token: str, purpose: str) -> TokenData:
    """Decode a token and check its purpose; raises JWTError when invalid."""
    payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
    user_id = payload.get("sub")
    if user_id is None or payload.get("purpose") != purpose:
        raise JWTError("Token not valid for this operation")
    return TokenData(user_id=user_id, purpose=purpose)


def build_link(route: str, token: str) -> str:
    return f"{APP_URL}/{route}#token={token}"


def deliver_link(email: str, link: str, purpose: str) -> None:
    logger.info(f"[AUTH:{purpose.upper()}] link issued for {email}: {link}")


# Users

def get_user_by_email(db: Database, email: str) -> Optional[dict]:
    return db[USERS].find_one({"email": normalize_email(email)})


def get_user_by_id(db: Database, user_id: str) -> Optional[dict]:
    try:
        return db[USERS].find_one({"_id": ObjectId(user_id)})
    except InvalidId:
        return None


def user_to_public(u: dict) -> dict:
    if not u:
        return u
    return {"id": str(u["_id"]), "email": u["email"], "has_password": bool(u.get("password"))}


def ensure_account(db: Database, email: str) -> dict:
    """Return the user for `email`, creating user, profile and contact rows on first sign-in."""
    user = get_user_by_email(db, email)
    if user:
        return user

    user_doc = UserAccount(
        email=email,
        password=None,
        created_at=datetime.now(timezone.utc),
    ).model_dump()
    try:
        inserted_id = db[USERS].insert_one(user_doc).inserted_id
    except PyMongoError as e:
        logger.error(f"Failed to create account for {email}: {e}")
        raise BackendError(str(e)) from e
    create_account_rows(db, str(inserted_id), email)
    logger.info(f"Created account {inserted_id} for {email}")
    return get_user_by_id(db, str(inserted_id))


def set_password(db: Database, user_id: str, password: str) -> None:
    try:
        db[USERS].update_one({"_id": ObjectId(user_id)}, {"$set": {"password": hash_password(password)}})
    except PyMongoError as e:
        logger.error(f"Failed to set password for {user_id}: {e}")
        raise BackendError(str(e)) from e


def authenticate(db: Database, email: str, password: str) -> Optional[dict]:
    user = get_user_by_email(db, email)
    if not user or not user.get("password"):
        return None
    if not verify_password(password, user["password"]):
        return None
    return user


def resolve_token_user(db: Database, token: str) -> Optional[dict]:
    try:
        token_data = decode_token(token, PURPOSE_ACCESS)
    except JWTError:
        return None
    return get_user_by_id(db, token_data.user_id)


# Dependencies

async def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user = resolve_token_user(db, token)
    if user is None:
        raise credentials_exception
    return user


async def require_onboarding_pending(
    current: dict = Depends(get_current_user), db: Database = Depends(get_db)
):
    """Allow only signed-in users who have not finished onboarding."""
    profile = fetch_profile(db, str(current["_id"]))
    if profile is not None and profile.onboarding_completed:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Onboarding already completed")
    return current
