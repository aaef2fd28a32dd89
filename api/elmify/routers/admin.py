"""Maintenance endpoints for administrators."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..deps import get_db
from ..services import catalog, playlist_manifest

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])
logger = logging.getLogger(__name__)


@router.delete("/cache/playlists")
def clear_playlist_cache(
    collection_id: str | None = Query(None, alias="collectionId"),
    admin: dict[str, Any] = Depends(require_admin),
) -> dict:
    """Drop cached playlist manifests for one collection, or all of them."""
    deleted = playlist_manifest.clear_manifest_cache(collection_id)
    logger.info(f"Admin {admin.get('sub')} cleared {deleted} cached manifests")
    return {"deleted": deleted}


@router.post("/lectures/repair-speakers")
def repair_lecture_speakers(
    db: Session = Depends(get_db),
    admin: dict[str, Any] = Depends(require_admin),
) -> dict:
    """Point every lecture at the speaker of its collection."""
    repaired = catalog.backfill_lecture_speakers(db)
    logger.info(f"Admin {admin.get('sub')} repaired speakers of {repaired} lectures")
    return {"repaired": repaired}
