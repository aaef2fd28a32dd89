"""Favorite lectures of the current user."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_db, get_storage
from ..pagination import PageParams, page_params, paginate
from ..services import catalog
from ..services.storage import StorageService

router = APIRouter(prefix="/api/v1/favorites", tags=["Favorites"])
logger = logging.getLogger(__name__)


def _serialize(favorite: models.Favorite, storage: StorageService) -> schemas.Favorite:
    return schemas.Favorite(
        id=favorite.id,
        lecture_id=favorite.lecture_id,
        created_at=favorite.created_at,
        lecture=schemas.Lecture.from_model(favorite.lecture, storage),
    )


def _find(db: Session, user: models.User, lecture_id: int) -> models.Favorite | None:
    return (
        db.query(models.Favorite)
        .filter(
            models.Favorite.user_id == user.id,
            models.Favorite.lecture_id == lecture_id,
        )
        .first()
    )


@router.get("", response_model=schemas.PagedResponse[schemas.Favorite])
def list_favorites(
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
):
    """Favorites, most recently added first."""
    query = (
        db.query(models.Favorite)
        .options(
            joinedload(models.Favorite.lecture).joinedload(models.Lecture.speaker),
            joinedload(models.Favorite.lecture).joinedload(models.Lecture.collection),
        )
        .filter(models.Favorite.user_id == current_user.id)
    )
    return paginate(
        query,
        params,
        lambda favorite: _serialize(favorite, storage),
        allowed_sorts={"createdAt": models.Favorite.created_at},
        default_order=(models.Favorite.created_at.desc(), models.Favorite.id.desc()),
    )


@router.get("/count", response_model=schemas.CountResponse)
def count_favorites(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.CountResponse:
    count = db.query(models.Favorite).filter(models.Favorite.user_id == current_user.id).count()
    return schemas.CountResponse(count=count)


@router.get("/check/{lecture_id}", response_model=schemas.FavoriteStatus)
def check_favorite(
    lecture_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.FavoriteStatus:
    return schemas.FavoriteStatus(is_favorited=_find(db, current_user, lecture_id) is not None)


@router.post(
    "/{lecture_id}",
    response_model=schemas.Favorite,
    status_code=status.HTTP_201_CREATED,
)
def add_favorite(
    lecture_id: int,
    response: Response,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Favorite:
    """Add a favorite. Adding one that already exists returns it with 200."""
    catalog.get_lecture_for_user(db, lecture_id, current_user)

    existing = _find(db, current_user, lecture_id)
    if existing:
        response.status_code = status.HTTP_200_OK
        return _serialize(existing, storage)

    favorite = models.Favorite(user_id=current_user.id, lecture_id=lecture_id)
    db.add(favorite)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent add of the same favorite
        db.rollback()
        response.status_code = status.HTTP_200_OK
        return _serialize(_find(db, current_user, lecture_id), storage)

    db.refresh(favorite)
    logger.info(f"User {current_user.clerk_id} added favorite {lecture_id}")
    return _serialize(favorite, storage)


@router.delete("/{lecture_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_favorite(
    lecture_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> None:
    """Remove a favorite. Removing one that does not exist is a no-op."""
    favorite = _find(db, current_user, lecture_id)
    if favorite:
        db.delete(favorite)
        db.commit()
