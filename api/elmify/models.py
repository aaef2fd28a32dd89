from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .db import Base


# ============================================================================
# CATALOG
# ============================================================================


class Speaker(Base):
    """A lecturer. Premium status cascades to all of their collections and lectures."""

    __tablename__ = "speakers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    bio = Column(Text, nullable=True)
    image_url = Column(String(1000), nullable=True)
    image_small_url = Column(String(1000), nullable=True)
    is_premium = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    collections = relationship(
        "Collection", back_populates="speaker", cascade="all, delete-orphan"
    )
    lectures = relationship("Lecture", back_populates="speaker")


class Collection(Base):
    """An album-like grouping of lectures by a single speaker."""

    __tablename__ = "collections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    speaker_id = Column(
        Integer, ForeignKey("speakers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    year = Column(Integer, nullable=True)
    cover_image_url = Column(String(1000), nullable=True)
    cover_image_small_url = Column(String(1000), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    speaker = relationship("Speaker", back_populates="collections")
    lectures = relationship("Lecture", back_populates="collection")

    __table_args__ = (
        UniqueConstraint("speaker_id", "title", name="uq_collection_speaker_title"),
    )

    @property
    def is_premium(self) -> bool:
        return bool(self.speaker and self.speaker.is_premium)


class Lecture(Base):
    """A single audio file belonging to a collection."""

    __tablename__ = "lectures"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False, index=True)
    genre = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=False, default=0)  # seconds
    file_name = Column(String(500), nullable=False)
    file_path = Column(String(1000), unique=True, nullable=False)  # object key
    file_size = Column(BigInteger, nullable=True)
    file_format = Column(String(50), nullable=True)
    bitrate = Column(Integer, nullable=True)
    sample_rate = Column(Integer, nullable=True)
    file_hash = Column(String(128), nullable=True)
    thumbnail_url = Column(String(1000), nullable=True)
    audio_url = Column(String(1000), nullable=True)
    description = Column(Text, nullable=True)
    lecture_number = Column(Integer, nullable=True)

    is_public = Column(Boolean, nullable=False, default=True)
    play_count = Column(Integer, nullable=False, default=0, index=True)
    last_played_at = Column(DateTime(timezone=True), nullable=True)

    speaker_id = Column(
        Integer, ForeignKey("speakers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    collection_id = Column(
        Integer, ForeignKey("collections.id", ondelete="SET NULL"), nullable=True, index=True
    )

    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    speaker = relationship("Speaker", back_populates="lectures")
    collection = relationship("Collection", back_populates="lectures")

    __table_args__ = (
        Index("ix_lectures_collection_number", "collection_id", "lecture_number"),
    )

    @property
    def is_premium(self) -> bool:
        if self.speaker is not None:
            return bool(self.speaker.is_premium)
        if self.collection is not None:
            return self.collection.is_premium
        return False


# ============================================================================
# CATEGORIES
# ============================================================================


class Category(Base):
    """Browsable topic. Categories nest one level through parent_id."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    icon_name = Column(String(50), nullable=True)
    color = Column(String(20), nullable=True)
    parent_id = Column(
        Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=True, index=True
    )
    display_order = Column(Integer, nullable=False, default=0)
    is_featured = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    lecture_count = Column(Integer, nullable=False, default=0)
    collection_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    parent = relationship("Category", remote_side=[id], back_populates="subcategories")
    subcategories = relationship(
        "Category", back_populates="parent", order_by="Category.display_order"
    )


class LectureCategory(Base):
    __tablename__ = "lecture_categories"

    lecture_id = Column(
        Integer, ForeignKey("lectures.id", ondelete="CASCADE"), primary_key=True
    )
    category_id = Column(
        Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CollectionCategory(Base):
    __tablename__ = "collection_categories"

    collection_id = Column(
        Integer, ForeignKey("collections.id", ondelete="CASCADE"), primary_key=True
    )
    category_id = Column(
        Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ============================================================================
# USERS & ENGAGEMENT
# ============================================================================


class User(Base):
    """Local mirror of an identity-provider account, created lazily on first request."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clerk_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    display_name = Column(String(255), nullable=True)
    profile_image_url = Column(String(1000), nullable=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    preferences = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    favorites = relationship("Favorite", back_populates="user", cascade="all, delete-orphan")
    listening_stats = relationship("ListeningStats", cascade="all, delete-orphan")
    playback_positions = relationship(
        "PlaybackPosition", back_populates="user", cascade="all, delete-orphan"
    )


class Favorite(Base):
    __tablename__ = "user_favorites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lecture_id = Column(
        Integer, ForeignKey("lectures.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    user = relationship("User", back_populates="favorites")
    lecture = relationship("Lecture")

    __table_args__ = (UniqueConstraint("user_id", "lecture_id", name="uq_favorite_user_lecture"),)


class PlaybackPosition(Base):
    """Resume point for a user on a lecture, in seconds like Lecture.duration."""

    __tablename__ = "playback_positions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lecture_id = Column(
        Integer, ForeignKey("lectures.id", ondelete="CASCADE"), nullable=False, index=True
    )
    current_position = Column(Integer, nullable=False, default=0)
    last_updated = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    user = relationship("User", back_populates="playback_positions")
    lecture = relationship("Lecture")

    __table_args__ = (
        UniqueConstraint("user_id", "lecture_id", name="uq_playback_user_lecture"),
    )


class ListeningStats(Base):
    """Seconds listened per user, lecture and calendar day."""

    __tablename__ = "listening_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lecture_id = Column(
        Integer, ForeignKey("lectures.id", ondelete="CASCADE"), nullable=False
    )
    date = Column(Date, nullable=False, index=True)
    total_play_time = Column(Integer, nullable=False, default=0)
    play_count = Column(Integer, nullable=False, default=0)
    completion_rate = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    lecture = relationship("Lecture")

    __table_args__ = (
        UniqueConstraint("user_id", "lecture_id", "date", name="uq_listening_stats_day"),
    )
