"""Catalog queries shared by the speaker, collection, lecture and category routers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import status
from sqlalchemy import func, or_, update
from sqlalchemy.orm import Query, Session, joinedload, selectinload

from .. import models
from ..errors import BusinessError, ResourceNotFoundError
from .premium import PremiumFilter

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100

# Sort whitelists for paged endpoints
SPEAKER_SORTS = {
    "name": models.Speaker.name,
    "createdAt": models.Speaker.created_at,
    "id": models.Speaker.id,
}
COLLECTION_SORTS = {
    "title": models.Collection.title,
    "year": models.Collection.year,
    "createdAt": models.Collection.created_at,
    "id": models.Collection.id,
}
LECTURE_SORTS = {
    "title": models.Lecture.title,
    "lectureNumber": models.Lecture.lecture_number,
    "playCount": models.Lecture.play_count,
    "duration": models.Lecture.duration,
    "year": models.Lecture.year,
    "createdAt": models.Lecture.created_at,
    "id": models.Lecture.id,
}


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIST_LIMIT))


# ============================================================================
# SPEAKERS & COLLECTIONS
# ============================================================================


def speakers_query(db: Session, premium: PremiumFilter) -> Query:
    return premium.apply_to_speakers(db.query(models.Speaker))


def get_speaker(db: Session, speaker_id: int, premium: PremiumFilter) -> models.Speaker:
    speaker = db.query(models.Speaker).filter(models.Speaker.id == speaker_id).first()
    if not premium.can_access_speaker(speaker):
        raise ResourceNotFoundError("Speaker", speaker_id)
    return speaker


def collections_query(db: Session, premium: PremiumFilter) -> Query:
    query = db.query(models.Collection).options(
        joinedload(models.Collection.speaker),
        selectinload(models.Collection.lectures),
    )
    return premium.apply_to_collections(query)


def get_collection(
    db: Session, collection_id: int, premium: PremiumFilter
) -> models.Collection:
    collection = (
        db.query(models.Collection)
        .options(joinedload(models.Collection.speaker))
        .filter(models.Collection.id == collection_id)
        .first()
    )
    if not premium.can_access_collection(collection):
        raise ResourceNotFoundError("Collection", collection_id)
    return collection


def lecture_counts(db: Session, collection_ids: list[int]) -> dict[int, int]:
    """Number of lectures per collection id, for list endpoints."""
    if not collection_ids:
        return {}
    rows = (
        db.query(models.Lecture.collection_id, func.count(models.Lecture.id))
        .filter(models.Lecture.collection_id.in_(collection_ids))
        .group_by(models.Lecture.collection_id)
        .all()
    )
    return {collection_id: count for collection_id, count in rows}


# ============================================================================
# LECTURES
# ============================================================================


def lectures_query(db: Session, premium: PremiumFilter) -> Query:
    query = db.query(models.Lecture).options(
        joinedload(models.Lecture.speaker),
        joinedload(models.Lecture.collection).joinedload(models.Collection.speaker),
    )
    return premium.apply_to_lectures(query)


def get_lecture(db: Session, lecture_id: int, premium: PremiumFilter) -> models.Lecture:
    lecture = (
        db.query(models.Lecture)
        .options(
            joinedload(models.Lecture.speaker),
            joinedload(models.Lecture.collection).joinedload(models.Collection.speaker),
        )
        .filter(models.Lecture.id == lecture_id)
        .first()
    )
    if not premium.can_access_lecture(lecture):
        raise ResourceNotFoundError("Lecture", lecture_id)
    return lecture


def get_lecture_for_user(
    db: Session, lecture_id: int, user: models.User | None
) -> models.Lecture:
    """Lecture the user acts on directly: 404 when missing, 403 when premium-locked."""
    lecture = db.query(models.Lecture).filter(models.Lecture.id == lecture_id).first()
    if lecture is None:
        raise ResourceNotFoundError("Lecture", lecture_id)
    if not PremiumFilter(user).can_access_lecture(lecture):
        raise BusinessError(
            "Premium subscription required to access this lecture",
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="ACCESS_DENIED",
        )
    return lecture


def lecture_order():
    """Album order: lecture number first, unnumbered lectures last, then title."""
    return (
        models.Lecture.lecture_number.is_(None),
        models.Lecture.lecture_number.asc(),
        models.Lecture.title.asc(),
    )


def lectures_by_collection(db: Session, collection_id: int, premium: PremiumFilter) -> Query:
    return lectures_query(db, premium).filter(models.Lecture.collection_id == collection_id)


def lectures_by_speaker(db: Session, speaker_id: int, premium: PremiumFilter) -> Query:
    return lectures_query(db, premium).filter(models.Lecture.speaker_id == speaker_id)


def trending_lectures(db: Session, premium: PremiumFilter, limit: int) -> list[models.Lecture]:
    """Most played first; recently played breaks ties."""
    return (
        lectures_query(db, premium)
        .order_by(
            models.Lecture.play_count.desc(),
            models.Lecture.last_played_at.is_(None),
            models.Lecture.last_played_at.desc(),
            models.Lecture.id.asc(),
        )
        .limit(clamp_limit(limit))
        .all()
    )


def popular_lectures(db: Session, premium: PremiumFilter, limit: int) -> list[models.Lecture]:
    return (
        lectures_query(db, premium)
        .order_by(models.Lecture.play_count.desc(), models.Lecture.id.asc())
        .limit(clamp_limit(limit))
        .all()
    )


def search_lectures(db: Session, term: str, premium: PremiumFilter) -> Query:
    """Case-insensitive match on lecture title, speaker name or collection title."""
    pattern = f"%{term.strip()}%"
    return (
        lectures_query(db, premium)
        .outerjoin(models.Speaker, models.Lecture.speaker_id == models.Speaker.id)
        .outerjoin(models.Collection, models.Lecture.collection_id == models.Collection.id)
        .filter(
            or_(
                models.Lecture.title.ilike(pattern),
                models.Speaker.name.ilike(pattern),
                models.Collection.title.ilike(pattern),
            )
        )
    )


def increment_play_count(db: Session, lecture_id: int) -> None:
    """Bump the counter in one statement so concurrent plays are not lost."""
    db.execute(
        update(models.Lecture)
        .where(models.Lecture.id == lecture_id)
        .values(
            play_count=models.Lecture.play_count + 1,
            last_played_at=datetime.now(timezone.utc),
        )
    )
    db.commit()


def backfill_lecture_speakers(db: Session) -> int:
    """
    Align ``lecture.speaker_id`` with the speaker of the lecture's collection.

    Returns the number of lectures repaired.
    """
    rows = (
        db.query(models.Lecture, models.Collection.speaker_id)
        .join(models.Collection, models.Lecture.collection_id == models.Collection.id)
        .filter(
            or_(
                models.Lecture.speaker_id.is_(None),
                models.Lecture.speaker_id != models.Collection.speaker_id,
            )
        )
        .all()
    )
    for lecture, speaker_id in rows:
        logger.info(
            f"Repairing speaker of lecture {lecture.id}: {lecture.speaker_id} -> {speaker_id}"
        )
        lecture.speaker_id = speaker_id
    if rows:
        db.commit()
    return len(rows)


# ============================================================================
# CATEGORIES
# ============================================================================


def active_categories(db: Session) -> Query:
    return db.query(models.Category).filter(models.Category.is_active.is_(True))


def top_level_categories(db: Session) -> list[models.Category]:
    return (
        active_categories(db)
        .filter(models.Category.parent_id.is_(None))
        .order_by(models.Category.display_order.asc(), models.Category.name.asc())
        .all()
    )


def featured_categories(db: Session) -> list[models.Category]:
    return (
        active_categories(db)
        .filter(models.Category.is_featured.is_(True))
        .order_by(models.Category.display_order.asc(), models.Category.name.asc())
        .all()
    )


def get_category(db: Session, slug: str) -> models.Category:
    category = active_categories(db).filter(models.Category.slug == slug).first()
    if category is None:
        raise ResourceNotFoundError("Category", slug)
    return category


def subcategories(db: Session, category: models.Category) -> list[models.Category]:
    return (
        active_categories(db)
        .filter(models.Category.parent_id == category.id)
        .order_by(models.Category.display_order.asc(), models.Category.name.asc())
        .all()
    )


def category_lectures(db: Session, category: models.Category, premium: PremiumFilter) -> Query:
    """Lectures tagged with the category."""
    return (
        lectures_query(db, premium)
        .join(models.LectureCategory, models.LectureCategory.lecture_id == models.Lecture.id)
        .filter(models.LectureCategory.category_id == category.id)
    )


def category_collections(
    db: Session, category: models.Category, premium: PremiumFilter
) -> Query:
    return (
        collections_query(db, premium)
        .join(
            models.CollectionCategory,
            models.CollectionCategory.collection_id == models.Collection.id,
        )
        .filter(models.CollectionCategory.category_id == category.id)
    )


def featured_collections(
    db: Session, category: models.Category, premium: PremiumFilter, limit: int = 5
) -> list[models.Collection]:
    return (
        category_collections(db, category, premium)
        .order_by(
            models.CollectionCategory.is_primary.desc(),
            models.Collection.title.asc(),
        )
        .limit(limit)
        .all()
    )
