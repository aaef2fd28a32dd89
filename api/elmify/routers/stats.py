"""Listening statistics of the current user."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_db
from ..services import stats as stats_service

router = APIRouter(prefix="/api/v1/stats", tags=["Stats"])


@router.get("/daily-summary", response_model=schemas.DailySummary)
def get_daily_summary(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.DailySummary:
    """Minutes listened today against the daily goal."""
    return stats_service.daily_summary(db, current_user)


@router.get("/streaks", response_model=schemas.Streaks)
def get_streaks(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Streaks:
    return stats_service.streaks(db, current_user)


@router.get("/weekly-progress", response_model=schemas.WeeklyProgress)
def get_weekly_progress(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.WeeklyProgress:
    """The last seven days, oldest first."""
    return stats_service.weekly_progress(db, current_user)


@router.post("/track", status_code=status.HTTP_204_NO_CONTENT)
def track_listening(
    payload: schemas.TrackListeningRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> None:
    stats_service.track_listening(db, current_user, payload.lecture_id, payload.play_time_seconds)
