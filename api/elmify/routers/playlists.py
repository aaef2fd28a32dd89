"""Playlist manifest endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_optional_user
from ..deps import get_db, get_storage
from ..services import playlist_manifest
from ..services.rate_limit import BUCKET_LIMITS, BucketType, rate_limiter
from ..services.storage import StorageService

router = APIRouter(prefix="/api/v1/playlists", tags=["Playlists"])
logger = logging.getLogger(__name__)


@router.post("/manifest", response_model=schemas.PlaylistManifestResponse)
def get_playlist_manifest(
    request: schemas.PlaylistManifestRequest,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: models.User | None = Depends(get_optional_user),
) -> schemas.PlaylistManifestResponse:
    """
    Signed audio URLs for a whole playlist in one call.

    Signed-in users are additionally limited per account so shared addresses
    do not starve each other.
    """
    if current_user is not None:
        result = rate_limiter.check_key(
            f"user:{current_user.clerk_id}:{BucketType.PLAYLIST.value}",
            BUCKET_LIMITS[BucketType.PLAYLIST],
        )
        if not result.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many playlist requests. Please try again later.",
                headers={"Retry-After": str(result.retry_after)},
            )

    return playlist_manifest.build_manifest(db, storage, request, current_user)
