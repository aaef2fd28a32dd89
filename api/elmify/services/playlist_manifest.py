"""Pre-signed playlist manifests.

A manifest carries one signed audio URL per track so players can queue a whole
collection without a round trip per lecture. Manifests are cached in Redis for
less time than the URLs live, and a cached manifest is only reused while its
URLs stay valid for a few more minutes.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from fastapi import status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from .. import models, schemas, settings
from ..cache import cache_get, cache_invalidate, cache_set
from ..errors import BusinessError
from .premium import PremiumFilter
from .storage import StorageService

logger = logging.getLogger(__name__)

CACHE_PREFIX = "playlist:manifest"
VALIDITY_MARGIN = timedelta(minutes=5)


def manifest_cache_key(playlist_id: str, clerk_id: str | None) -> str:
    return f"{CACHE_PREFIX}:{playlist_id}:{clerk_id or 'public'}"


def is_manifest_valid(
    manifest: schemas.PlaylistManifestResponse, now: datetime | None = None
) -> bool:
    now = now or datetime.now(timezone.utc)
    return manifest.metadata.expires_at > now + VALIDITY_MARGIN


def _load_cached(key: str, lecture_ids: list[int]) -> schemas.PlaylistManifestResponse | None:
    raw = cache_get(key)
    if not isinstance(raw, dict):
        return None
    try:
        manifest = schemas.PlaylistManifestResponse.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Discarding unreadable cached manifest {key}: {e}")
        return None
    # The same playlist may be requested with a different track list
    if [track.lecture_id for track in manifest.tracks] != lecture_ids:
        return None
    if not is_manifest_valid(manifest):
        return None
    return manifest


def _load_lectures(db: Session, lecture_ids: list[int]) -> list[models.Lecture]:
    """Lectures in request order. Every id must exist."""
    unique_ids = set(lecture_ids)
    rows = db.query(models.Lecture).filter(models.Lecture.id.in_(unique_ids)).all()
    by_id = {lecture.id: lecture for lecture in rows}
    if len(by_id) != len(unique_ids):
        logger.warning(
            f"Some lectures not found. Requested: {len(unique_ids)}, Found: {len(by_id)}"
        )
        raise BusinessError("Some lectures were not found")
    return [by_id[lecture_id] for lecture_id in lecture_ids]


def generate_manifest(
    storage: StorageService,
    playlist_id: str,
    lectures: list[models.Lecture],
    url_expiration: int | None = None,
    workers: int | None = None,
) -> schemas.PlaylistManifestResponse:
    """Sign every lecture URL in parallel, keeping the input order."""
    started = time.monotonic()
    url_expiration = url_expiration or settings.MANIFEST_URL_EXPIRATION_SECONDS
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=url_expiration)

    # Plain values only; ORM instances stay on this thread
    entries = [(lecture.id, lecture.file_path, lecture.duration or 0) for lecture in lectures]

    def sign(entry: tuple[int, str, int]) -> schemas.TrackManifest:
        lecture_id, file_path, duration = entry
        return schemas.TrackManifest(
            lecture_id=lecture_id,
            audio_url=storage.generate_presigned_url(file_path, expires_in=url_expiration),
            expires_at=expires_at,
            duration=duration,
        )

    max_workers = min(workers or settings.MANIFEST_SIGNING_WORKERS, max(1, len(entries)))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        tracks = list(executor.map(sign, entries))

    metadata = schemas.PlaylistMetadata(
        total_tracks=len(tracks),
        total_duration=sum(duration for _, _, duration in entries),
        generated_at=datetime.now(timezone.utc),
        expires_at=expires_at,
        cached=False,
    )
    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info(f"Generated manifest for {len(tracks)} tracks in {elapsed_ms}ms")
    return schemas.PlaylistManifestResponse(
        collection_id=playlist_id, tracks=tracks, metadata=metadata
    )


def build_manifest(
    db: Session,
    storage: StorageService,
    request: schemas.PlaylistManifestRequest,
    user: models.User | None,
) -> schemas.PlaylistManifestResponse:
    """
    Return signed URLs for ``request.lecture_ids``, reusing a cached manifest when valid.

    Args:
        db: Database session
        storage: Storage service used to sign audio URLs
        request: Playlist id (collection or playlist type) and ordered lecture ids
        user: Signed-in user, or None for anonymous callers

    Returns:
        The manifest, with ``metadata.cached`` set when served from Redis

    Raises:
        BusinessError: 400 for a missing playlist id or unknown lectures,
            403 when a lecture is premium and the user is not
    """
    playlist_id = request.collection_id or request.playlist_type
    if not playlist_id:
        raise BusinessError("Either collectionId or playlistType is required")

    clerk_id = user.clerk_id if user is not None else None
    logger.info(
        f"Playlist manifest request: playlist={playlist_id}, "
        f"tracks={len(request.lecture_ids)}, user={clerk_id}"
    )

    # Checked before the cache lookup: access may have changed since it was filled
    lectures = _load_lectures(db, request.lecture_ids)
    premium = PremiumFilter(user)
    denied = [lecture.id for lecture in lectures if not premium.can_access_lecture(lecture)]
    if denied:
        raise BusinessError(
            "Premium subscription required for some lectures in this playlist",
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="ACCESS_DENIED",
        )

    key = manifest_cache_key(playlist_id, clerk_id)
    cached = _load_cached(key, request.lecture_ids)
    if cached is not None:
        logger.info(f"Cache HIT for playlist: {playlist_id}")
        cached.metadata.cached = True
        return cached

    logger.info(f"Cache MISS for playlist: {playlist_id} - generating new manifest")
    manifest = generate_manifest(storage, playlist_id, lectures)
    if cache_set(
        key,
        manifest.model_dump(mode="json", by_alias=True),
        ttl=settings.MANIFEST_CACHE_TTL_SECONDS,
    ):
        logger.info(
            f"Cached manifest for playlist: {playlist_id} "
            f"(TTL: {settings.MANIFEST_CACHE_TTL_SECONDS // 60} minutes)"
        )
    return manifest


def clear_manifest_cache(collection_id: str | None = None) -> int:
    """Drop cached manifests for one collection, or all of them."""
    if collection_id is not None:
        return cache_invalidate(f"{CACHE_PREFIX}:{collection_id}:*")
    return cache_invalidate(f"{CACHE_PREFIX}:*")
