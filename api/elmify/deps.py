from __future__ import annotations

from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from .db import get_session
from .services.storage import StorageService, get_storage_service
from .services.streaming import AudioStreamingService


def get_db() -> Generator[Session, None, None]:
    yield from get_session()


def get_storage() -> StorageService:
    return get_storage_service()


def get_streaming_service(
    storage: StorageService = Depends(get_storage),
) -> AudioStreamingService:
    return AudioStreamingService(storage)
