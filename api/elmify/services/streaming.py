"""Byte-range audio delivery proxied from object storage.

Mobile players request audio in ranges and follow up with further requests as
playback advances, so every partial response is capped at ``max_chunk_size``
bytes regardless of how much was asked for.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import status
from fastapi.responses import StreamingResponse

from .. import schemas, settings
from ..errors import InvalidRangeError
from .storage import AUDIO_CONTENT_TYPE, StorageService, iter_body

logger = logging.getLogger(__name__)

BYTES_RANGE_PREFIX = "bytes="


@dataclass
class StreamingConfig:
    max_chunk_size: int = 10 * 1024 * 1024
    buffer_size: int = 8192
    cache_max_age: int = 31536000
    detailed_logging: bool = False

    @classmethod
    def from_settings(cls) -> "StreamingConfig":
        return cls(
            max_chunk_size=settings.STREAMING_MAX_CHUNK_SIZE,
            buffer_size=settings.STREAMING_BUFFER_SIZE,
            cache_max_age=settings.STREAMING_CACHE_MAX_AGE,
            detailed_logging=settings.STREAMING_DETAILED_LOGGING,
        )


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def parse_range(range_header: str, size: int, max_chunk_size: int) -> ByteRange:
    """
    Resolve a ``bytes=start-end`` header against an object of ``size`` bytes.

    An empty start means 0 and an empty end means the last byte. The end is
    clamped to ``start + max_chunk_size - 1`` and to ``size - 1``; ranges that
    still cannot be satisfied raise InvalidRangeError.
    """
    byte_spec = range_header[len(BYTES_RANGE_PREFIX):].strip()
    if "," in byte_spec:
        byte_spec = byte_spec.split(",", 1)[0].strip()  # multipart ranges: serve the first
    start_raw, sep, end_raw = byte_spec.partition("-")
    if not sep:
        raise InvalidRangeError(f"Invalid range: {range_header}", size)

    try:
        start = int(start_raw) if start_raw.strip() else 0
        requested_end = int(end_raw) if end_raw.strip() else size - 1
    except ValueError:
        raise InvalidRangeError(f"Invalid range: {range_header}", size) from None

    end = min(requested_end, start + max_chunk_size - 1, size - 1)

    if start < 0 or start >= size or end < start:
        raise InvalidRangeError(
            f"Invalid range: bytes={start}-{end} (file size: {size})", size
        )
    return ByteRange(start, end)


class AudioStreamingService:
    def __init__(self, storage: StorageService, config: StreamingConfig | None = None):
        self.storage = storage
        self.config = config or StreamingConfig.from_settings()

    def _headers(self, content_type: str) -> dict[str, str]:
        return {
            "Content-Type": content_type,
            "Accept-Ranges": "bytes",
            "Cache-Control": f"public, max-age={self.config.cache_max_age}",
            "X-Content-Type-Options": "nosniff",
        }

    def stream_audio(self, object_key: str, range_header: str | None = None) -> StreamingResponse:
        """Full (200) or partial (206) response body for ``object_key``."""
        metadata = self.storage.get_object_metadata(object_key)
        size = metadata.size
        content_type = metadata.content_type or AUDIO_CONTENT_TYPE

        if self.config.detailed_logging:
            logger.debug(
                f"Streaming request for: {object_key} (size: {size} bytes, range: {range_header})"
            )

        headers = self._headers(content_type)

        if range_header and range_header.startswith(BYTES_RANGE_PREFIX):
            byte_range = parse_range(range_header, size, self.config.max_chunk_size)
            if self.config.detailed_logging:
                logger.debug(
                    f"Serving range: {byte_range.content_range(size)} (requested: {range_header})"
                )
            body = self.storage.get_object_stream_range(
                object_key, byte_range.start, byte_range.end
            )
            headers["Content-Range"] = byte_range.content_range(size)
            headers["Content-Length"] = str(byte_range.length)
            return StreamingResponse(
                iter_body(body, self.config.buffer_size),
                status_code=status.HTTP_206_PARTIAL_CONTENT,
                headers=headers,
                media_type=content_type,
            )

        if self.config.detailed_logging:
            logger.debug(f"Serving full content: {object_key} ({size} bytes)")
        body = self.storage.get_object_stream(object_key)
        headers["Content-Length"] = str(size)
        return StreamingResponse(
            iter_body(body, self.config.buffer_size),
            status_code=status.HTTP_200_OK,
            headers=headers,
            media_type=content_type,
        )

    def get_streaming_metadata(self, object_key: str) -> schemas.StreamingMetadata:
        """
        Describe an object for clients that plan their own range requests.

        Args:
            object_key: Storage key of the audio file

        Returns:
            StreamingMetadata with size, content type and the largest chunk served
        """
        metadata = self.storage.get_object_metadata(object_key)
        return schemas.StreamingMetadata(
            object_key=object_key,
            file_size=metadata.size,
            content_type=metadata.content_type or AUDIO_CONTENT_TYPE,
            max_chunk_size=self.config.max_chunk_size,
            last_modified=metadata.last_modified,
        )
