"""Playback positions (resume points) of the current user."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, joinedload

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_db, get_storage
from ..errors import ResourceNotFoundError
from ..services import catalog
from ..services.storage import StorageService

router = APIRouter(prefix="/api/v1/playback", tags=["Playback"])
logger = logging.getLogger(__name__)


def _positions(db: Session, user: models.User):
    return (
        db.query(models.PlaybackPosition)
        .options(
            joinedload(models.PlaybackPosition.lecture).joinedload(models.Lecture.speaker),
            joinedload(models.PlaybackPosition.lecture).joinedload(models.Lecture.collection),
        )
        .filter(models.PlaybackPosition.user_id == user.id)
        .order_by(models.PlaybackPosition.last_updated.desc(), models.PlaybackPosition.id.desc())
    )


def _find(db: Session, user: models.User, lecture_id: int) -> models.PlaybackPosition | None:
    return (
        db.query(models.PlaybackPosition)
        .filter(
            models.PlaybackPosition.user_id == user.id,
            models.PlaybackPosition.lecture_id == lecture_id,
        )
        .first()
    )


@router.get("", response_model=list[schemas.PlaybackPosition])
def list_positions(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> list[schemas.PlaybackPosition]:
    return [schemas.PlaybackPosition.from_model(p) for p in _positions(db, current_user).all()]


@router.get("/continue-listening", response_model=list[schemas.PlaybackPositionWithLecture])
def continue_listening(
    limit: int = Query(10, ge=1, le=catalog.MAX_LIST_LIMIT),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> list[schemas.PlaybackPositionWithLecture]:
    """Lectures started but not finished, most recent first."""
    rows = (
        _positions(db, current_user)
        .join(models.Lecture, models.PlaybackPosition.lecture_id == models.Lecture.id)
        .filter(
            models.PlaybackPosition.current_position > 0,
            models.PlaybackPosition.current_position < models.Lecture.duration,
        )
        .limit(limit)
        .all()
    )
    return [schemas.PlaybackPositionWithLecture.build(p, storage) for p in rows]


@router.get("/recent", response_model=list[schemas.PlaybackPositionWithLecture])
def recent_positions(
    limit: int = Query(10, ge=1, le=catalog.MAX_LIST_LIMIT),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> list[schemas.PlaybackPositionWithLecture]:
    rows = _positions(db, current_user).limit(limit).all()
    return [schemas.PlaybackPositionWithLecture.build(p, storage) for p in rows]


@router.get("/{lecture_id}", response_model=schemas.PlaybackPosition)
def get_position(
    lecture_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.PlaybackPosition:
    position = _find(db, current_user, lecture_id)
    if position is None:
        raise ResourceNotFoundError("Playback position", lecture_id)
    return schemas.PlaybackPosition.from_model(position)


@router.put("/{lecture_id}", response_model=schemas.PlaybackPosition)
def update_position(
    lecture_id: int,
    payload: schemas.PlaybackUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.PlaybackPosition:
    catalog.get_lecture_for_user(db, lecture_id, current_user)

    position = _find(db, current_user, lecture_id)
    if position is None:
        position = models.PlaybackPosition(user_id=current_user.id, lecture_id=lecture_id)
        db.add(position)
    position.current_position = payload.current_position
    position.last_updated = datetime.now(timezone.utc)
    db.commit()
    db.refresh(position)
    logger.debug(
        f"Saved position {payload.current_position}s on lecture {lecture_id} "
        f"for user {current_user.clerk_id}"
    )
    return schemas.PlaybackPosition.from_model(position)


@router.delete("/{lecture_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_position(
    lecture_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> None:
    position = _find(db, current_user, lecture_id)
    if position is not None:
        db.delete(position)
        db.commit()
