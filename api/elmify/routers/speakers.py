"""Speaker endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_premium_filter
from ..deps import get_db, get_storage
from ..pagination import PageParams, page_params, paginate
from ..services import catalog
from ..services.premium import PremiumFilter
from ..services.storage import StorageService

router = APIRouter(prefix="/api/v1/speakers", tags=["Speakers"])


@router.get("", response_model=schemas.PagedResponse[schemas.Speaker])
def list_speakers(
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    """All speakers visible to the caller, by name unless ``sort`` says otherwise."""
    return paginate(
        catalog.speakers_query(db, premium),
        params,
        lambda speaker: schemas.Speaker.from_model(speaker, storage),
        allowed_sorts=catalog.SPEAKER_SORTS,
        default_order=(models.Speaker.name.asc(),),
    )


@router.get("/{speaker_id}", response_model=schemas.Speaker)
def get_speaker(
    speaker_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
) -> schemas.Speaker:
    speaker = catalog.get_speaker(db, speaker_id, premium)
    return schemas.Speaker.from_model(speaker, storage)


@router.get(
    "/{speaker_id}/collections",
    response_model=schemas.PagedResponse[schemas.Collection],
)
def list_speaker_collections(
    speaker_id: int,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    catalog.get_speaker(db, speaker_id, premium)
    query = catalog.collections_query(db, premium).filter(
        models.Collection.speaker_id == speaker_id
    )
    return paginate(
        query,
        params,
        lambda collection: schemas.Collection.from_model(collection, storage),
        allowed_sorts=catalog.COLLECTION_SORTS,
        default_order=(models.Collection.year.desc(), models.Collection.title.asc()),
    )


@router.get("/{speaker_id}/lectures", response_model=schemas.PagedResponse[schemas.Lecture])
def list_speaker_lectures(
    speaker_id: int,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    catalog.get_speaker(db, speaker_id, premium)
    return paginate(
        catalog.lectures_by_speaker(db, speaker_id, premium),
        params,
        lambda lecture: schemas.Lecture.from_model(lecture, storage),
        allowed_sorts=catalog.LECTURE_SORTS,
        default_order=catalog.lecture_order(),
    )
