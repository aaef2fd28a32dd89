"""Daily listening statistics, goals and streaks."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import BusinessError, ResourceNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DAILY_GOAL_MINUTES = 30
WEEK_DAYS = 7


def daily_goal_minutes(user: models.User) -> int:
    """``preferences.dailyGoalMinutes``, or the default when unset or unreadable."""
    prefs = user.preferences
    if not isinstance(prefs, dict):
        return DEFAULT_DAILY_GOAL_MINUTES
    goal = prefs.get("dailyGoalMinutes", prefs.get("daily_goal_minutes"))
    if goal is None:
        return DEFAULT_DAILY_GOAL_MINUTES
    try:
        return int(goal)
    except (TypeError, ValueError):
        logger.warning(f"Invalid daily goal in preferences for user {user.clerk_id}, using default")
        return DEFAULT_DAILY_GOAL_MINUTES


def _daily_totals(db: Session, user: models.User, start: date, end: date) -> dict[date, int]:
    """Seconds listened per day between ``start`` and ``end`` inclusive."""
    rows = (
        db.query(models.ListeningStats.date, func.sum(models.ListeningStats.total_play_time))
        .filter(
            models.ListeningStats.user_id == user.id,
            models.ListeningStats.date >= start,
            models.ListeningStats.date <= end,
        )
        .group_by(models.ListeningStats.date)
        .all()
    )
    return {day: int(total or 0) for day, total in rows}


def _goal_met_dates(db: Session, user: models.User, goal_seconds: int) -> list[date]:
    """Days on which the goal was met, most recent first."""
    total = func.sum(models.ListeningStats.total_play_time)
    rows = (
        db.query(models.ListeningStats.date)
        .filter(models.ListeningStats.user_id == user.id)
        .group_by(models.ListeningStats.date)
        .having(total >= goal_seconds)
        .order_by(models.ListeningStats.date.desc())
        .all()
    )
    return [row[0] for row in rows]


def current_streak(goal_met: list[date], today: date) -> int:
    """
    Consecutive goal days ending today or yesterday.

    A streak stays alive through today until the day is over, so a goal met
    yesterday still counts even if nothing has been played yet today.
    """
    met = set(goal_met)
    yesterday = today - timedelta(days=1)
    if today in met:
        cursor = today
    elif yesterday in met:
        cursor = yesterday
    else:
        return 0

    streak = 0
    while cursor in met:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def best_streak(goal_met: list[date]) -> int:
    if not goal_met:
        return 0
    ordered = sorted(set(goal_met))
    best = run = 1
    for previous, current in zip(ordered, ordered[1:]):
        if current - previous == timedelta(days=1):
            run += 1
            best = max(best, run)
        else:
            run = 1
    return best


def track_listening(
    db: Session,
    user: models.User,
    lecture_id: int,
    play_time_seconds: int,
    today: date | None = None,
) -> models.ListeningStats:
    """
    Add listening time to the user's row for ``lecture_id`` on ``today``.

    Args:
        db: Database session
        user: Listener
        lecture_id: Lecture that was played
        play_time_seconds: Seconds listened since the last report; must be positive
        today: Day to record against (defaults to the server date)

    Returns:
        The updated daily stats row, with play count and completion rate refreshed
    """
    if play_time_seconds <= 0:
        raise BusinessError("Play time must be positive")
    lecture = db.query(models.Lecture).filter(models.Lecture.id == lecture_id).first()
    if lecture is None:
        raise ResourceNotFoundError("Lecture", lecture_id)

    today = today or date.today()
    stats = (
        db.query(models.ListeningStats)
        .filter(
            models.ListeningStats.user_id == user.id,
            models.ListeningStats.lecture_id == lecture_id,
            models.ListeningStats.date == today,
        )
        .first()
    )
    if stats is None:
        stats = models.ListeningStats(
            user_id=user.id,
            lecture_id=lecture_id,
            date=today,
            total_play_time=0,
            play_count=0,
            completion_rate=0.0,
        )
        db.add(stats)

    stats.total_play_time = (stats.total_play_time or 0) + play_time_seconds
    stats.play_count = (stats.play_count or 0) + 1
    if lecture.duration and lecture.duration > 0:
        stats.completion_rate = min(stats.total_play_time / lecture.duration * 100.0, 100.0)

    db.commit()
    db.refresh(stats)
    logger.info(
        f"Tracked {play_time_seconds} seconds for lecture {lecture_id} "
        f"for user {user.clerk_id} on {today}"
    )
    return stats


def daily_summary(
    db: Session, user: models.User, today: date | None = None
) -> schemas.DailySummary:
    """Minutes listened today against the user's daily goal."""
    today = today or date.today()
    goal = daily_goal_minutes(user)
    seconds = _daily_totals(db, user, today, today).get(today, 0)
    minutes = seconds // 60
    return schemas.DailySummary(
        day=today,
        today_minutes=minutes,
        daily_goal_minutes=goal,
        goal_met=minutes >= goal,
        remaining_minutes=max(0, goal - minutes),
    )


def streaks(db: Session, user: models.User, today: date | None = None) -> schemas.Streaks:
    today = today or date.today()
    goal_met = _goal_met_dates(db, user, daily_goal_minutes(user) * 60)
    if not goal_met:
        return schemas.Streaks()
    return schemas.Streaks(
        current_streak=current_streak(goal_met, today),
        best_streak=best_streak(goal_met),
        last_active_date=goal_met[0],
    )


def weekly_progress(
    db: Session, user: models.User, today: date | None = None
) -> schemas.WeeklyProgress:
    """
    Minutes and goal status for each of the last seven days.

    Returns:
        WeeklyProgress keyed by date, oldest first, days without listening at 0
    """
    today = today or date.today()
    start = today - timedelta(days=WEEK_DAYS - 1)
    goal = daily_goal_minutes(user)
    totals = _daily_totals(db, user, start, today)

    days: dict[date, schemas.DayProgress] = {}
    for offset in range(WEEK_DAYS):
        day = start + timedelta(days=offset)
        minutes = totals.get(day, 0) // 60
        days[day] = schemas.DayProgress(minutes=minutes, goal_met=minutes >= goal)
    return schemas.WeeklyProgress(days=days)
