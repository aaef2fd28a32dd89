"""Centralized environment-driven settings.

Keep this module lightweight: no app imports, to avoid circular deps.
Values from a local .env file are loaded before anything is read.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _str_env(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


ENVIRONMENT: str = _str_env("ENVIRONMENT", "development")
LOG_LEVEL: str = (_str_env("LOG_LEVEL", "INFO") or "INFO").upper()

# Clerk identity provider
CLERK_JWT_ISSUER: str | None = _str_env("CLERK_JWT_ISSUER")
CLERK_JWKS_URL: str | None = _str_env("CLERK_JWKS_URL")
CLERK_SECRET_KEY: str | None = _str_env("CLERK_SECRET_KEY")
CLERK_API_BASE: str = _str_env("CLERK_API_BASE", "https://api.clerk.com/v1")

# S3-compatible object storage (Cloudflare R2 or MinIO)
R2_ENDPOINT: str | None = _str_env("R2_ENDPOINT")
R2_ACCESS_KEY: str | None = _str_env("R2_ACCESS_KEY")
R2_SECRET_KEY: str | None = _str_env("R2_SECRET_KEY")
R2_REGION: str = _str_env("R2_REGION", "auto")
R2_BUCKET_NAME: str | None = _str_env("R2_BUCKET_NAME")
R2_PRESIGNED_URL_EXPIRATION: int = _int_env("R2_PRESIGNED_URL_EXPIRATION", 3600)

# Audio streaming
MIN_CHUNK_SIZE = 1024 * 1024
STREAMING_MAX_CHUNK_SIZE: int = max(
    MIN_CHUNK_SIZE, _int_env("STREAMING_MAX_CHUNK_SIZE", 10 * 1024 * 1024)
)
STREAMING_BUFFER_SIZE: int = max(1, _int_env("STREAMING_BUFFER_SIZE", 8192))
STREAMING_CACHE_MAX_AGE: int = _int_env("STREAMING_CACHE_MAX_AGE", 31536000)
STREAMING_DETAILED_LOGGING: bool = _bool_env("STREAMING_DETAILED_LOGGING", False)

# Playlist manifests
MANIFEST_URL_EXPIRATION_SECONDS: int = _int_env("MANIFEST_URL_EXPIRATION_SECONDS", 4 * 60 * 60)
MANIFEST_CACHE_TTL_SECONDS: int = _int_env("MANIFEST_CACHE_TTL_SECONDS", 210 * 60)
MANIFEST_SIGNING_WORKERS: int = max(1, _int_env("MANIFEST_SIGNING_WORKERS", 8))

# Request handling
RATE_LIMIT_ENABLED: bool = _bool_env("RATE_LIMIT_ENABLED", True)
REQUEST_LOGGING: bool = _bool_env("REQUEST_LOGGING", False)
RUN_MIGRATIONS_ON_STARTUP: bool = _bool_env("RUN_MIGRATIONS_ON_STARTUP", True)
CORS_ORIGINS: str = _str_env("CORS_ORIGINS", "http://localhost:3000,http://localhost:8081")

REDIS_URL: str | None = _str_env("REDIS_URL")
