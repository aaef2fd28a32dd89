"""Byte-range parsing and audio streaming responses."""

from __future__ import annotations

import pytest

from elmify import models
from elmify.errors import InvalidRangeError
from elmify.services.streaming import AudioStreamingService, ByteRange, StreamingConfig, parse_range

MB = 1024 * 1024
KEY = "Speaker/Collection/01 - Intro.mp3"


def test_parse_range_start_and_end():
    assert parse_range("bytes=0-99", 1000, 10 * MB) == ByteRange(0, 99)


def test_parse_range_open_end_reads_to_last_byte():
    assert parse_range("bytes=500-", 1000, 10 * MB) == ByteRange(500, 999)


def test_parse_range_empty_start_means_zero():
    assert parse_range("bytes=-99", 1000, 10 * MB) == ByteRange(0, 99)


def test_parse_range_end_past_eof_is_clamped_to_size():
    assert parse_range("bytes=900-5000", 1000, 10 * MB) == ByteRange(900, 999)


def test_parse_range_is_clamped_to_max_chunk():
    byte_range = parse_range("bytes=0-", 50 * MB, 10 * MB)
    assert byte_range == ByteRange(0, 10 * MB - 1)
    assert byte_range.length == 10 * MB


def test_parse_range_takes_first_of_multiple_ranges():
    assert parse_range("bytes=0-9, 20-29", 100, MB) == ByteRange(0, 9)


def test_parse_range_last_byte():
    assert parse_range("bytes=999-999", 1000, MB) == ByteRange(999, 999)


@pytest.mark.parametrize(
    "header",
    ["bytes=1000-", "bytes=2000-3000", "bytes=50-10", "bytes=abc-10", "bytes=10"],
)
def test_parse_range_rejects_unsatisfiable_or_malformed(header):
    with pytest.raises(InvalidRangeError) as excinfo:
        parse_range(header, 1000, MB)
    assert excinfo.value.status_code == 416
    assert excinfo.value.headers() == {"Content-Range": "bytes */1000"}


def test_content_range_header():
    assert ByteRange(0, 99).content_range(1000) == "bytes 0-99/1000"


# ============================================================================
# SERVICE
# ============================================================================


def _service(storage, max_chunk_size=MB) -> AudioStreamingService:
    return AudioStreamingService(
        storage,
        StreamingConfig(max_chunk_size=max_chunk_size, buffer_size=7, cache_max_age=3600),
    )


def test_stream_without_range_returns_full_content(storage):
    storage.put(KEY, b"0123456789")
    response = _service(storage).stream_audio(KEY)

    assert response.status_code == 200
    assert response.headers["content-length"] == "10"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.headers["cache-control"] == "public, max-age=3600"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert "content-range" not in response.headers


def test_stream_with_range_returns_partial_content(storage):
    storage.put(KEY, b"0123456789")
    response = _service(storage).stream_audio(KEY, "bytes=2-5")

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 2-5/10"
    assert response.headers["content-length"] == "4"


def test_stream_ignores_non_bytes_range_units(storage):
    storage.put(KEY, b"0123456789")
    response = _service(storage).stream_audio(KEY, "items=0-1")
    assert response.status_code == 200


def test_stream_defaults_content_type_to_mpeg(storage):
    storage.put(KEY, b"abc", content_type=None)
    response = _service(storage).stream_audio(KEY)
    assert response.headers["content-type"].startswith("audio/mpeg")


def test_stream_keeps_stored_content_type(storage):
    storage.put(KEY, b"abc", content_type="audio/mp4")
    response = _service(storage).stream_audio(KEY)
    assert response.headers["content-type"].startswith("audio/mp4")


def test_streaming_metadata(storage):
    storage.put(KEY, b"x" * 2048)
    metadata = _service(storage, max_chunk_size=4 * MB).get_streaming_metadata(KEY)

    assert metadata.object_key == KEY
    assert metadata.file_size == 2048
    assert metadata.content_type == "audio/mpeg"
    assert metadata.max_chunk_size == 4 * MB


# ============================================================================
# ENDPOINTS
# ============================================================================


def test_stream_endpoint_requires_token(client, catalog):
    response = client.get(f"/api/v1/lectures/{catalog['first']}/stream")
    assert response.status_code == 401
    assert response.json()["error"] == "AUTHENTICATION_REQUIRED"


def test_stream_endpoint_serves_range(client, catalog, storage, auth_headers):
    key = "Free Speaker/Foundations/01 - First Steps.mp3"
    storage.put(key, bytes(range(256)) * 4)

    response = client.get(
        f"/api/v1/lectures/{catalog['first']}/stream",
        headers={**auth_headers(), "Range": "bytes=0-99"},
    )

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 0-99/1024"
    assert response.content == (bytes(range(256)) * 4)[:100]


def test_stream_endpoint_accepts_query_token(client, catalog, storage, make_token):
    storage.put("Free Speaker/Foundations/01 - First Steps.mp3", b"abcdef")

    response = client.get(
        f"/api/v1/lectures/{catalog['first']}/stream", params={"token": make_token()}
    )

    assert response.status_code == 200
    assert response.content == b"abcdef"


def test_stream_endpoint_rejects_unsatisfiable_range(client, catalog, storage, auth_headers):
    storage.put("Free Speaker/Foundations/01 - First Steps.mp3", b"abcdef")

    response = client.get(
        f"/api/v1/lectures/{catalog['first']}/stream",
        headers={**auth_headers(), "Range": "bytes=100-"},
    )

    assert response.status_code == 416
    assert response.headers["content-range"] == "bytes */6"
    assert response.json()["error"] == "RANGE_NOT_SATISFIABLE"


def test_stream_endpoint_missing_object_is_404(client, catalog, auth_headers):
    response = client.get(f"/api/v1/lectures/{catalog['first']}/stream", headers=auth_headers())
    assert response.status_code == 404


def test_stream_endpoint_blocks_premium_lecture(client, catalog, auth_headers):
    response = client.get(
        f"/api/v1/lectures/{catalog['premium_lecture']}/stream", headers=auth_headers()
    )
    assert response.status_code == 403


def test_stream_url_counts_a_play(client, catalog, auth_headers, db):
    response = client.get(
        f"/api/v1/lectures/{catalog['first']}/stream-url", headers=auth_headers()
    )

    assert response.status_code == 200
    assert response.json() == {"url": f"/api/v1/lectures/{catalog['first']}/stream"}

    db.expire_all()
    lecture = db.get(models.Lecture, catalog["first"])
    assert lecture.play_count == 2
    assert lecture.last_played_at is not None


def test_stream_metadata_endpoint(client, catalog, storage, auth_headers):
    storage.put("Free Speaker/Foundations/01 - First Steps.mp3", b"x" * 10)

    response = client.get(
        f"/api/v1/lectures/{catalog['first']}/stream-metadata", headers=auth_headers()
    )

    assert response.status_code == 200
    body = response.json()
    assert body["fileSize"] == 10
    assert body["contentType"] == "audio/mpeg"
    assert body["objectKey"] == "Free Speaker/Foundations/01 - First Steps.mp3"
