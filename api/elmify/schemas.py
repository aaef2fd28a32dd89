from __future__ import annotations

from datetime import date, datetime
from math import ceil
from typing import TYPE_CHECKING, Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from . import models
    from .services.storage import StorageService


class CamelModel(BaseModel):
    """Base for API payloads: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# ============================================================================
# BASE SCHEMAS
# ============================================================================


class ValidationErrorItem(CamelModel):
    field: str
    rejected_value: Any = None
    message: str


class ErrorResponse(CamelModel):
    """Error body returned for every non-2xx response."""

    status: int
    error: str
    message: str
    path: str
    timestamp: datetime
    trace_id: str
    validation_errors: list[ValidationErrorItem] | None = None


T = TypeVar("T")


class PaginationInfo(CamelModel):
    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool

    @classmethod
    def build(cls, page: int, size: int, total: int) -> "PaginationInfo":
        total_pages = ceil(total / size) if size else 0
        return cls(
            current_page=page,
            page_size=size,
            total_items=total,
            total_pages=total_pages,
            has_next=page + 1 < total_pages,
            has_previous=page > 0,
        )


class PagedResponse(CamelModel, Generic[T]):
    """Generic paginated response."""

    data: list[T]
    pagination: PaginationInfo


# ============================================================================
# HEALTH
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"
    uptime_s: float | None = None


# ============================================================================
# CATALOG
# ============================================================================


class Speaker(CamelModel):
    id: int
    name: str
    bio: str | None = None
    image_url: str | None = None
    image_small_url: str | None = None
    is_premium: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, speaker: "models.Speaker", storage: "StorageService") -> "Speaker":
        return cls(
            id=speaker.id,
            name=speaker.name,
            bio=speaker.bio,
            image_url=storage.presign_or_passthrough(speaker.image_url),
            image_small_url=storage.presign_or_passthrough(speaker.image_small_url),
            is_premium=speaker.is_premium,
            created_at=speaker.created_at,
            updated_at=speaker.updated_at,
        )


class Collection(CamelModel):
    id: int
    title: str
    description: str | None = None
    year: int | None = None
    cover_image_url: str | None = None
    cover_image_small_url: str | None = None
    speaker_id: int | None = None
    speaker_name: str | None = None
    lecture_count: int = 0
    is_premium: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(
        cls,
        collection: "models.Collection",
        storage: "StorageService",
        lecture_count: int | None = None,
    ) -> "Collection":
        speaker = collection.speaker
        if lecture_count is None:
            lecture_count = len(collection.lectures)
        return cls(
            id=collection.id,
            title=collection.title,
            description=collection.description,
            year=collection.year,
            cover_image_url=storage.presign_or_passthrough(collection.cover_image_url),
            cover_image_small_url=storage.presign_or_passthrough(
                collection.cover_image_small_url
            ),
            speaker_id=speaker.id if speaker else None,
            speaker_name=speaker.name if speaker else None,
            lecture_count=lecture_count,
            is_premium=collection.is_premium,
            created_at=collection.created_at,
            updated_at=collection.updated_at,
        )


class Lecture(CamelModel):
    id: int
    title: str
    genre: str | None = None
    year: int | None = None
    duration: int = 0
    file_name: str | None = None
    file_path: str | None = None
    file_size: int | None = None
    file_format: str | None = None
    description: str | None = None
    lecture_number: int | None = None
    thumbnail_url: str | None = None
    audio_url: str | None = None
    play_count: int = 0
    is_premium: bool = False
    speaker_id: int | None = None
    speaker_name: str | None = None
    collection_id: int | None = None
    collection_title: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, lecture: "models.Lecture", storage: "StorageService") -> "Lecture":
        speaker = lecture.speaker
        collection = lecture.collection
        thumbnail = lecture.thumbnail_url
        if not thumbnail and collection is not None:
            # Lectures without artwork borrow their collection cover
            thumbnail = collection.cover_image_small_url or collection.cover_image_url
        return cls(
            id=lecture.id,
            title=lecture.title,
            genre=lecture.genre,
            year=lecture.year,
            duration=lecture.duration or 0,
            file_name=lecture.file_name,
            file_path=lecture.file_path,
            file_size=lecture.file_size,
            file_format=lecture.file_format,
            description=lecture.description,
            lecture_number=lecture.lecture_number,
            thumbnail_url=storage.presign_or_passthrough(thumbnail),
            audio_url=lecture.audio_url,
            play_count=lecture.play_count or 0,
            is_premium=lecture.is_premium,
            speaker_id=speaker.id if speaker else lecture.speaker_id,
            speaker_name=speaker.name if speaker else None,
            collection_id=collection.id if collection else lecture.collection_id,
            collection_title=collection.title if collection else None,
            created_at=lecture.created_at,
            updated_at=lecture.updated_at,
        )


class Category(CamelModel):
    id: int
    name: str
    slug: str
    description: str | None = None
    icon_name: str = "folder-outline"
    color: str = "#a855f7"
    parent_id: int | None = None
    lecture_count: int = 0
    collection_count: int = 0
    is_featured: bool = False

    @classmethod
    def from_model(cls, category: "models.Category") -> "Category":
        return cls(
            id=category.id,
            name=category.name,
            slug=category.slug,
            description=category.description,
            icon_name=category.icon_name or "folder-outline",
            color=category.color or "#a855f7",
            parent_id=category.parent_id,
            lecture_count=category.lecture_count or 0,
            collection_count=category.collection_count or 0,
            is_featured=bool(category.is_featured),
        )


class CategoryDetail(Category):
    subcategories: list[Category] = Field(default_factory=list)
    featured_collections: list[Collection] = Field(default_factory=list)


# ============================================================================
# AUDIO
# ============================================================================


class StreamUrlResponse(BaseModel):
    url: str


class StreamingMetadata(CamelModel):
    object_key: str
    file_size: int
    content_type: str
    max_chunk_size: int
    last_modified: datetime | None = None


# ============================================================================
# USERS
# ============================================================================


class UserPreferences(CamelModel):
    """Client preferences stored as JSON on the user row."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    autoplay: bool = True
    playback_speed: float = Field(default=1.0, gt=0, le=4)
    skip_forward_seconds: int = Field(default=30, ge=1)
    skip_backward_seconds: int = Field(default=15, ge=1)
    theme: Literal["LIGHT", "DARK", "SYSTEM"] = "LIGHT"
    daily_goal_minutes: int = Field(default=20, ge=1, le=1440)
    notifications_enabled: bool = True
    download_over_wifi_only: bool = True


class User(CamelModel):
    id: int
    clerk_id: str
    email: str | None = None
    display_name: str | None = None
    profile_image_url: str | None = None
    is_premium: bool = False
    preferences: dict[str, Any] | None = None
    created_at: datetime | None = None


class UserSyncRequest(CamelModel):
    clerk_id: str = Field(min_length=1)
    email: str | None = None
    display_name: str | None = None
    profile_image_url: str | None = None


# ============================================================================
# ENGAGEMENT
# ============================================================================


class FavoriteStatus(CamelModel):
    is_favorited: bool


class CountResponse(BaseModel):
    count: int


class Favorite(CamelModel):
    id: int
    lecture_id: int
    created_at: datetime | None = None
    lecture: Lecture | None = None


class PlaybackPosition(CamelModel):
    user_id: str
    lecture_id: int
    current_position: int
    last_updated: datetime | None = None

    @classmethod
    def from_model(cls, position: "models.PlaybackPosition") -> "PlaybackPosition":
        return cls(
            user_id=position.user.clerk_id,
            lecture_id=position.lecture_id,
            current_position=position.current_position,
            last_updated=position.last_updated,
        )


class PlaybackPositionWithLecture(PlaybackPosition):
    lecture: Lecture
    progress: float = 0.0

    @classmethod
    def build(
        cls, position: "models.PlaybackPosition", storage: "StorageService"
    ) -> "PlaybackPositionWithLecture":
        duration = position.lecture.duration or 0
        progress = 0.0
        if duration > 0:
            progress = min(max(position.current_position / duration * 100.0, 0.0), 100.0)
        return cls(
            user_id=position.user.clerk_id,
            lecture_id=position.lecture_id,
            current_position=position.current_position,
            last_updated=position.last_updated,
            lecture=Lecture.from_model(position.lecture, storage),
            progress=progress,
        )


class PlaybackUpdate(CamelModel):
    current_position: int = Field(ge=0)


# ============================================================================
# STATS
# ============================================================================


class TrackListeningRequest(CamelModel):
    lecture_id: int
    play_time_seconds: int = Field(gt=0)


class DailySummary(CamelModel):
    day: date = Field(alias="date")
    today_minutes: int
    daily_goal_minutes: int
    goal_met: bool
    remaining_minutes: int


class Streaks(CamelModel):
    current_streak: int = 0
    best_streak: int = 0
    last_active_date: date | None = None


class DayProgress(CamelModel):
    minutes: int
    goal_met: bool


class WeeklyProgress(CamelModel):
    days: dict[date, DayProgress]


# ============================================================================
# PLAYLISTS
# ============================================================================


class PlaylistManifestRequest(CamelModel):
    collection_id: str | None = None
    playlist_type: str | None = None
    lecture_ids: list[int] = Field(min_length=1, max_length=1000)


class TrackManifest(CamelModel):
    lecture_id: int
    audio_url: str
    expires_at: datetime
    duration: int = 0


class PlaylistMetadata(CamelModel):
    total_tracks: int
    total_duration: int
    generated_at: datetime
    expires_at: datetime
    cached: bool = False


class PlaylistManifestResponse(CamelModel):
    collection_id: str
    tracks: list[TrackManifest]
    metadata: PlaylistMetadata
