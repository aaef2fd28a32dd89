"""StorageService over a mocked boto3 client."""

from __future__ import annotations

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from elmify.errors import ResourceNotFoundError, StorageError
from elmify.services.storage import StorageConfig, StorageService, iter_body, to_path_style


def _service(client: MagicMock, bucket: str | None = "elmify-audio") -> StorageService:
    config = StorageConfig(
        endpoint_url="https://acct123.r2.cloudflarestorage.com",
        access_key="key",
        secret_key="secret",
        bucket_name=bucket,
        presigned_url_expiration=3600,
    )
    return StorageService(config, client=client)


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def test_to_path_style_rewrites_virtual_host_r2_urls():
    url = "https://elmify-audio.acct123.r2.cloudflarestorage.com/Speaker/a.mp3?X-Amz-Signature=abc"
    assert to_path_style(url, "elmify-audio") == (
        "https://acct123.r2.cloudflarestorage.com/elmify-audio/Speaker/a.mp3?X-Amz-Signature=abc"
    )


def test_to_path_style_leaves_other_urls_alone():
    already = "https://acct123.r2.cloudflarestorage.com/elmify-audio/a.mp3?sig=1"
    minio = "http://localhost:9000/elmify-audio/a.mp3?sig=1"
    assert to_path_style(already, "elmify-audio") == already
    assert to_path_style(minio, "elmify-audio") == minio


def test_generate_presigned_url_requests_audio_headers():
    client = MagicMock()
    client.generate_presigned_url.return_value = (
        "https://elmify-audio.acct123.r2.cloudflarestorage.com/a.mp3?sig=1"
    )

    url = _service(client).generate_presigned_url("a.mp3", expires_in=600)

    assert url == "https://acct123.r2.cloudflarestorage.com/elmify-audio/a.mp3?sig=1"
    args, kwargs = client.generate_presigned_url.call_args
    assert args == ("get_object",)
    assert kwargs["ExpiresIn"] == 600
    assert kwargs["Params"]["Bucket"] == "elmify-audio"
    assert kwargs["Params"]["ResponseContentType"] == "audio/mpeg"
    assert "max-age" in kwargs["Params"]["ResponseCacheControl"]


def test_generate_presigned_url_uses_configured_expiration():
    client = MagicMock()
    client.generate_presigned_url.return_value = "http://localhost:9000/elmify-audio/a.mp3"

    _service(client).generate_presigned_url("a.mp3")

    assert client.generate_presigned_url.call_args.kwargs["ExpiresIn"] == 3600


def test_presign_or_passthrough():
    client = MagicMock()
    client.generate_presigned_url.return_value = "http://localhost:9000/elmify-audio/img.jpg"
    service = _service(client)

    assert service.presign_or_passthrough(None) is None
    assert service.presign_or_passthrough("") is None
    assert service.presign_or_passthrough("https://cdn.example.com/x.jpg") == (
        "https://cdn.example.com/x.jpg"
    )
    assert service.presign_or_passthrough("img.jpg") == "http://localhost:9000/elmify-audio/img.jpg"


def test_presign_or_passthrough_maps_failures_to_none():
    client = MagicMock()
    client.generate_presigned_url.side_effect = _client_error("AccessDenied", "GetObject")
    assert _service(client).presign_or_passthrough("img.jpg") is None


def test_unconfigured_bucket_raises_storage_error():
    with pytest.raises(StorageError):
        _service(MagicMock(), bucket=None).generate_presigned_url("a.mp3")


def test_get_object_metadata():
    client = MagicMock()
    modified = datetime(2026, 1, 1, tzinfo=timezone.utc)
    client.head_object.return_value = {
        "ContentLength": 1234,
        "ContentType": "audio/mpeg",
        "LastModified": modified,
    }

    metadata = _service(client).get_object_metadata("a.mp3")

    assert metadata.size == 1234
    assert metadata.content_type == "audio/mpeg"
    assert metadata.last_modified == modified


def test_get_object_metadata_missing_object_is_not_found():
    client = MagicMock()
    client.head_object.side_effect = _client_error("404")

    with pytest.raises(ResourceNotFoundError):
        _service(client).get_object_metadata("missing.mp3")


def test_get_object_metadata_other_errors_are_storage_errors():
    client = MagicMock()
    client.head_object.side_effect = _client_error("InternalError")

    with pytest.raises(StorageError):
        _service(client).get_object_metadata("a.mp3")


def test_object_exists():
    client = MagicMock()
    service = _service(client)
    assert service.object_exists("a.mp3") is True

    client.head_object.side_effect = _client_error("NoSuchKey")
    assert service.object_exists("a.mp3") is False


def test_get_object_stream_range_sends_range_header():
    client = MagicMock()
    client.get_object.return_value = {"Body": io.BytesIO(b"data")}
    service = _service(client)

    service.get_object_stream_range("a.mp3", 10, 19)
    assert client.get_object.call_args.kwargs["Range"] == "bytes=10-19"

    service.get_object_stream_range("a.mp3", 10)
    assert client.get_object.call_args.kwargs["Range"] == "bytes=10-"


def test_list_objects_follows_pages():
    client = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Contents": [{"Key": "A/x.mp3", "Size": 10}]},
        {"Contents": [{"Key": "A/y.mp3", "Size": 20}]},
        {},
    ]
    client.get_paginator.return_value = paginator

    objects = _service(client).list_objects("A/")

    assert [(obj.key, obj.size) for obj in objects] == [("A/x.mp3", 10), ("A/y.mp3", 20)]
    paginator.paginate.assert_called_once_with(Bucket="elmify-audio", Prefix="A/")


def test_iter_body_chunks_and_closes():
    body = io.BytesIO(b"abcdefghij")
    chunks = list(iter_body(body, 4))
    assert chunks == [b"abcd", b"efgh", b"ij"]
    assert body.closed
