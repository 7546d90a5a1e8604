"""
Runtime configuration for the bcontact API.

Values come from the environment (optionally a local .env file) and are
exposed as typed module constants.
"""
import os

from dotenv import load_dotenv

load_dotenv()


# Database
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
DATABASE_NAME: str = os.getenv("DATABASE_NAME", "bcontact")

# Auth
JWT_SECRET: str = os.getenv("JWT_SECRET", "supersecretkey")
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))
LINK_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("LINK_TOKEN_EXPIRE_MINUTES", "60"))
UNIVERSITY_DOMAIN: str = os.getenv("UNIVERSITY_DOMAIN", "@studbocconi.it")
EXPOSE_AUTH_LINKS: bool = os.getenv("EXPOSE_AUTH_LINKS", "").lower() == "true"

# Public URLs
APP_URL: str = os.getenv("APP_URL", "http://localhost:5173/bcontact").rstrip("/")
PUBLIC_API_URL: str = os.getenv("PUBLIC_API_URL", "http://localhost:8000").rstrip("/")

_raw_origins = os.getenv("CORS_ORIGINS", "*")
CORS_ORIGINS: list[str] = [o.strip() for o in _raw_origins.split(",") if o.strip()]

# Server
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
PORT: int = int(os.getenv("PORT", "8000"))
