#!/usr/bin/env python3
"""
R2 Catalog Import Script

Walks the audio bucket and upserts speakers, collections and lectures.
The bucket is laid out as::

    <Speaker>/speaker.json                   optional {"bio", "isPremium"}
    <Speaker>/speaker[_small].{jpg,png,webp}
    <Speaker>/<Collection>/collection.json   optional {"year", "description"}
    <Speaker>/<Collection>/collection[_small].{jpg,png,webp}
    <Speaker>/<Collection>/NN - Title.mp3

Rows are matched by speaker name, (speaker, collection title) and object key,
so running the import again only applies what changed.

Usage:
    python -m scripts.import_r2_catalog

Options:
    --dry-run           Report what would change without committing
    --prefix PREFIX     Only scan keys under PREFIX (e.g. "Speaker Name/")
    --repair-speakers   Align every lecture's speaker with its collection's speaker
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Iterable

from sqlalchemy.orm import Session

from elmify import models
from elmify.db import SessionLocal
from elmify.errors import StorageError
from elmify.services.catalog import backfill_lecture_speakers
from elmify.services.playlist_manifest import clear_manifest_cache
from elmify.services.storage import ObjectMetadata, StorageService, get_storage_service

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {".mp3", ".m4a", ".wav"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

_LECTURE_NAME = re.compile(r"^(\d+)\s*[-–—]\s*(.*)$")


@dataclass
class LectureFile:
    key: str
    file_name: str
    size: int | None = None


@dataclass
class CollectionEntry:
    title: str
    files: list[LectureFile] = field(default_factory=list)
    metadata_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    cover_image: str | None = None
    cover_image_small: str | None = None


@dataclass
class SpeakerEntry:
    name: str
    metadata_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    image: str | None = None
    image_small: str | None = None
    collections: dict[str, CollectionEntry] = field(default_factory=dict)


@dataclass
class ImportSummary:
    speakers_created: int = 0
    speakers_updated: int = 0
    collections_created: int = 0
    collections_updated: int = 0
    lectures_created: int = 0
    lectures_updated: int = 0
    skipped_keys: list[str] = field(default_factory=list)


def parse_lecture_filename(file_name: str) -> tuple[int | None, str]:
    """``"03 - The Title.mp3"`` -> ``(3, "The Title")``; unnumbered names give ``None``."""
    stem = PurePosixPath(file_name).stem.strip()
    match = _LECTURE_NAME.match(stem)
    if match:
        title = match.group(2).strip() or stem
        return int(match.group(1)), title
    return None, stem


def _image_role(file_name: str, base: str) -> str | None:
    """``"large"`` / ``"small"`` when ``file_name`` is ``<base>[_small].<image ext>``."""
    path = PurePosixPath(file_name)
    if path.suffix.lower() not in IMAGE_EXTENSIONS:
        return None
    if path.stem == base:
        return "large"
    if path.stem == f"{base}_small":
        return "small"
    return None


def parse_bucket_layout(
    objects: Iterable[ObjectMetadata],
) -> tuple[dict[str, SpeakerEntry], list[str]]:
    """Group object keys by speaker and collection. Returns the layout and skipped keys."""
    speakers: dict[str, SpeakerEntry] = {}
    skipped: list[str] = []

    for obj in objects:
        key = obj.key
        if key.endswith("/"):
            continue
        parts = key.split("/")
        if len(parts) < 2 or len(parts) > 3 or not parts[0]:
            skipped.append(key)
            continue

        speaker = speakers.setdefault(parts[0], SpeakerEntry(name=parts[0]))

        if len(parts) == 2:
            file_name = parts[1]
            role = _image_role(file_name, "speaker")
            if file_name == "speaker.json":
                speaker.metadata_key = key
            elif role == "large":
                speaker.image = key
            elif role == "small":
                speaker.image_small = key
            else:
                skipped.append(key)
            continue

        collection_title, file_name = parts[1], parts[2]
        collection = speaker.collections.setdefault(
            collection_title, CollectionEntry(title=collection_title)
        )
        role = _image_role(file_name, "collection")
        if file_name == "collection.json":
            collection.metadata_key = key
        elif PurePosixPath(file_name).suffix.lower() in AUDIO_EXTENSIONS:
            collection.files.append(LectureFile(key=key, file_name=file_name, size=obj.size))
        elif role == "large":
            collection.cover_image = key
        elif role == "small":
            collection.cover_image_small = key
        else:
            skipped.append(key)

    return speakers, skipped


def _read_json(storage: StorageService, key: str) -> dict[str, Any]:
    try:
        data = json.loads(storage.read_text(key))
    except (StorageError, ValueError) as e:
        logger.warning(f"Failed to read metadata {key}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring metadata {key}: expected a JSON object")
        return {}
    return data


def load_metadata(storage: StorageService, speakers: dict[str, SpeakerEntry]) -> None:
    for speaker in speakers.values():
        if speaker.metadata_key:
            speaker.metadata = _read_json(storage, speaker.metadata_key)
        for collection in speaker.collections.values():
            if collection.metadata_key:
                collection.metadata = _read_json(storage, collection.metadata_key)


def _coerce_year(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _assign(row: Any, **fields: Any) -> bool:
    """Set attributes that differ. Returns True if anything changed."""
    changed = False
    for name, value in fields.items():
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed = True
    return changed


def _upsert_speaker(db: Session, entry: SpeakerEntry, summary: ImportSummary) -> models.Speaker:
    speaker = db.query(models.Speaker).filter(models.Speaker.name == entry.name).first()
    fields: dict[str, Any] = {}
    if entry.image:
        fields["image_url"] = entry.image
    if entry.image_small:
        fields["image_small_url"] = entry.image_small
    if entry.metadata.get("bio"):
        fields["bio"] = entry.metadata["bio"]
    if "isPremium" in entry.metadata:
        fields["is_premium"] = bool(entry.metadata["isPremium"])

    if speaker is None:
        speaker = models.Speaker(name=entry.name, is_premium=False)
        _assign(speaker, **fields)
        db.add(speaker)
        db.flush()
        summary.speakers_created += 1
        logger.info(f"+ Speaker: {entry.name}")
    elif _assign(speaker, **fields):
        summary.speakers_updated += 1
        logger.info(f"~ Speaker: {entry.name}")
    return speaker


def _upsert_collection(
    db: Session, speaker: models.Speaker, entry: CollectionEntry, summary: ImportSummary
) -> models.Collection:
    collection = (
        db.query(models.Collection)
        .filter(
            models.Collection.speaker_id == speaker.id,
            models.Collection.title == entry.title,
        )
        .first()
    )
    fields: dict[str, Any] = {}
    if entry.cover_image:
        fields["cover_image_url"] = entry.cover_image
    if entry.cover_image_small:
        fields["cover_image_small_url"] = entry.cover_image_small
    if entry.metadata.get("description"):
        fields["description"] = entry.metadata["description"]
    year = _coerce_year(entry.metadata.get("year"))
    if year is not None:
        fields["year"] = year

    if collection is None:
        collection = models.Collection(speaker_id=speaker.id, title=entry.title)
        _assign(collection, **fields)
        db.add(collection)
        db.flush()
        summary.collections_created += 1
        logger.info(f"+ Collection: {speaker.name} / {entry.title}")
    elif _assign(collection, **fields):
        summary.collections_updated += 1
        logger.info(f"~ Collection: {speaker.name} / {entry.title}")
    return collection


def _upsert_lectures(
    db: Session,
    speaker: models.Speaker,
    collection: models.Collection,
    entry: CollectionEntry,
    summary: ImportSummary,
) -> None:
    files = sorted(entry.files, key=lambda f: f.file_name)
    for position, audio in enumerate(files, 1):
        number, title = parse_lecture_filename(audio.file_name)
        fields = {
            "title": title,
            "file_name": audio.file_name,
            "file_size": audio.size,
            "file_format": PurePosixPath(audio.file_name).suffix.lstrip(".").lower() or "mp3",
            "lecture_number": number if number is not None else position,
            "speaker_id": speaker.id,
            "collection_id": collection.id,
        }
        lecture = db.query(models.Lecture).filter(models.Lecture.file_path == audio.key).first()
        if lecture is None:
            lecture = models.Lecture(file_path=audio.key, duration=0, play_count=0)
            _assign(lecture, **fields)
            db.add(lecture)
            summary.lectures_created += 1
        elif _assign(lecture, **fields):
            summary.lectures_updated += 1
    db.flush()


def import_catalog(db: Session, speakers: dict[str, SpeakerEntry]) -> ImportSummary:
    """Apply the parsed layout to the database. The caller commits or rolls back."""
    summary = ImportSummary()
    for name in sorted(speakers):
        speaker_entry = speakers[name]
        speaker = _upsert_speaker(db, speaker_entry, summary)
        for title in sorted(speaker_entry.collections):
            collection_entry = speaker_entry.collections[title]
            collection = _upsert_collection(db, speaker, collection_entry, summary)
            _upsert_lectures(db, speaker, collection, collection_entry, summary)
    return summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import the audio catalog from the R2 bucket")
    parser.add_argument("--dry-run", action="store_true", help="Preview without making changes")
    parser.add_argument("--prefix", default="", help="Only scan keys under this prefix")
    parser.add_argument(
        "--repair-speakers",
        action="store_true",
        help="Align lecture speakers with their collection's speaker after importing",
    )
    args = parser.parse_args(argv)

    logger.info("=" * 60)
    logger.info("R2 Catalog Import")
    logger.info("=" * 60)
    if args.dry_run:
        logger.info("DRY RUN MODE - No changes will be made")

    start_time = time.time()
    storage = get_storage_service()
    objects = storage.list_objects(args.prefix)
    logger.info(f"Found {len(objects)} objects under prefix {args.prefix!r}")

    speakers, skipped = parse_bucket_layout(objects)
    load_metadata(storage, speakers)

    db = SessionLocal()
    try:
        summary = import_catalog(db, speakers)
        summary.skipped_keys = skipped
        repaired = backfill_lecture_speakers(db) if args.repair_speakers and not args.dry_run else 0
        if args.dry_run:
            db.rollback()
        else:
            db.commit()
            clear_manifest_cache()
    except Exception:
        db.rollback()
        logger.exception("Import failed, nothing was committed")
        return 1
    finally:
        db.close()

    logger.info("=" * 60)
    logger.info("IMPORT COMPLETE" if not args.dry_run else "DRY RUN COMPLETE")
    logger.info("=" * 60)
    logger.info(f"Speakers:    +{summary.speakers_created} ~{summary.speakers_updated}")
    logger.info(f"Collections: +{summary.collections_created} ~{summary.collections_updated}")
    logger.info(f"Lectures:    +{summary.lectures_created} ~{summary.lectures_updated}")
    if args.repair_speakers:
        logger.info(f"Repaired lecture speakers: {repaired}")
    if skipped:
        logger.info(f"Skipped {len(skipped)} unrecognized keys")
        for key in skipped:
            logger.debug(f"  skipped: {key}")
    logger.info(f"Elapsed time: {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
