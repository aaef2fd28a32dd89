"""Premium content gating.

Premium status lives on the speaker and cascades to every collection and
lecture of that speaker. Anonymous and non-premium users never see premium
content; filters are applied in SQL so page counts stay accurate.
"""

from __future__ import annotations

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Query

from .. import models


def _free_speaker():
    return or_(models.Speaker.is_premium.is_(False), models.Speaker.is_premium.is_(None))


def _free_speaker_ids():
    return select(models.Speaker.id).where(_free_speaker()).correlate(None)


class PremiumFilter:
    def __init__(self, user: models.User | None):
        self.user = user

    @property
    def is_premium(self) -> bool:
        return bool(self.user is not None and self.user.is_premium)

    def apply_to_lectures(self, query: Query) -> Query:
        if self.is_premium:
            return query
        free_collections = (
            select(models.Collection.id)
            .join(models.Speaker, models.Collection.speaker_id == models.Speaker.id)
            .where(_free_speaker())
            .correlate(None)
        )
        # Lectures without a speaker fall back to their collection's speaker
        return query.filter(
            or_(
                models.Lecture.speaker_id.in_(_free_speaker_ids()),
                and_(
                    models.Lecture.speaker_id.is_(None),
                    or_(
                        models.Lecture.collection_id.is_(None),
                        models.Lecture.collection_id.in_(free_collections),
                    ),
                ),
            )
        )

    def apply_to_collections(self, query: Query) -> Query:
        if self.is_premium:
            return query
        return query.filter(models.Collection.speaker_id.in_(_free_speaker_ids()))

    def apply_to_speakers(self, query: Query) -> Query:
        if self.is_premium:
            return query
        return query.filter(_free_speaker())

    def can_access_lecture(self, lecture: models.Lecture | None) -> bool:
        if lecture is None:
            return False
        return self.is_premium or not lecture.is_premium

    def can_access_collection(self, collection: models.Collection | None) -> bool:
        if collection is None:
            return False
        return self.is_premium or not collection.is_premium

    def can_access_speaker(self, speaker: models.Speaker | None) -> bool:
        if speaker is None:
            return False
        return self.is_premium or not speaker.is_premium
