"""Lecture endpoints: catalog reads and audio delivery."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user, get_premium_filter, get_stream_user
from ..deps import get_db, get_storage, get_streaming_service
from ..pagination import PageParams, page_params, paginate
from ..services import catalog
from ..services.premium import PremiumFilter
from ..services.storage import StorageService
from ..services.streaming import AudioStreamingService

router = APIRouter(prefix="/api/v1/lectures", tags=["Lectures"])
logger = logging.getLogger(__name__)


@router.get("", response_model=schemas.PagedResponse[schemas.Lecture])
def list_lectures(
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    return paginate(
        catalog.lectures_query(db, premium),
        params,
        lambda lecture: schemas.Lecture.from_model(lecture, storage),
        allowed_sorts=catalog.LECTURE_SORTS,
        default_order=(models.Lecture.title.asc(),),
    )


@router.get("/trending", response_model=list[schemas.Lecture])
def trending_lectures(
    limit: int = Query(10, ge=1, le=catalog.MAX_LIST_LIMIT),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
) -> list[schemas.Lecture]:
    lectures = catalog.trending_lectures(db, premium, limit)
    return [schemas.Lecture.from_model(lecture, storage) for lecture in lectures]


@router.get("/popular", response_model=list[schemas.Lecture])
def popular_lectures(
    limit: int = Query(10, ge=1, le=catalog.MAX_LIST_LIMIT),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
) -> list[schemas.Lecture]:
    lectures = catalog.popular_lectures(db, premium, limit)
    return [schemas.Lecture.from_model(lecture, storage) for lecture in lectures]


@router.get("/search", response_model=schemas.PagedResponse[schemas.Lecture])
def search_lectures(
    q: str = Query(..., min_length=1, max_length=200),
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    """Search by lecture title, speaker name or collection title."""
    return paginate(
        catalog.search_lectures(db, q, premium),
        params,
        lambda lecture: schemas.Lecture.from_model(lecture, storage),
        allowed_sorts=catalog.LECTURE_SORTS,
        default_order=(models.Lecture.play_count.desc(), models.Lecture.title.asc()),
    )


@router.get(
    "/collection/{collection_id}",
    response_model=schemas.PagedResponse[schemas.Lecture],
)
def lectures_by_collection(
    collection_id: int,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    """Lectures of a collection in album order."""
    catalog.get_collection(db, collection_id, premium)
    return paginate(
        catalog.lectures_by_collection(db, collection_id, premium),
        params,
        lambda lecture: schemas.Lecture.from_model(lecture, storage),
        allowed_sorts=catalog.LECTURE_SORTS,
        default_order=catalog.lecture_order(),
    )


@router.get("/speaker/{speaker_id}", response_model=schemas.PagedResponse[schemas.Lecture])
def lectures_by_speaker(
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


@router.get("/{lecture_id}", response_model=schemas.Lecture)
def get_lecture(
    lecture_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
) -> schemas.Lecture:
    lecture = catalog.get_lecture(db, lecture_id, premium)
    return schemas.Lecture.from_model(lecture, storage)


# ============================================================================
# AUDIO
# ============================================================================


@router.get("/{lecture_id}/stream-url", response_model=schemas.StreamUrlResponse)
def get_stream_url(
    lecture_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.StreamUrlResponse:
    """
    Relative URL of the proxy stream for a lecture.

    Each call counts as a play.
    """
    lecture = catalog.get_lecture_for_user(db, lecture_id, current_user)
    catalog.increment_play_count(db, lecture.id)
    return schemas.StreamUrlResponse(url=f"/api/v1/lectures/{lecture.id}/stream")


@router.get(
    "/{lecture_id}/stream",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"audio/mpeg": {}}},
        206: {"description": "Partial content"},
        416: {"description": "Range not satisfiable"},
    },
)
def stream_lecture(
    lecture_id: int,
    range_header: str | None = Header(None, alias="Range"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_stream_user),
    streaming: AudioStreamingService = Depends(get_streaming_service),
) -> StreamingResponse:
    """
    Proxy the lecture audio from object storage with HTTP Range support.

    The token may be passed as ``?token=`` for players that cannot set headers.
    """
    lecture = catalog.get_lecture_for_user(db, lecture_id, current_user)
    return streaming.stream_audio(lecture.file_path, range_header)


@router.get("/{lecture_id}/stream-metadata", response_model=schemas.StreamingMetadata)
def get_stream_metadata(
    lecture_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    streaming: AudioStreamingService = Depends(get_streaming_service),
) -> schemas.StreamingMetadata:
    lecture = catalog.get_lecture_for_user(db, lecture_id, current_user)
    return streaming.get_streaming_metadata(lecture.file_path)
