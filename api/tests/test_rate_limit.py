"""Token buckets, path classification and the rate limit middleware."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from elmify.errors import register_exception_handlers
from elmify.middleware import RateLimitMiddleware
from elmify.services.rate_limit import BucketType, RateLimiter, TokenBucket, classify_path


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_bucket_allows_capacity_then_blocks():
    clock = FakeClock()
    bucket = TokenBucket(capacity=3, clock=clock)

    assert [bucket.try_consume() for _ in range(4)] == [True, True, True, False]


def test_bucket_refills_after_a_full_period():
    clock = FakeClock()
    bucket = TokenBucket(capacity=2, clock=clock)
    bucket.try_consume()
    bucket.try_consume()

    clock.now += 59
    assert bucket.try_consume() is False

    clock.now += 1
    assert bucket.try_consume() is True
    assert bucket.tokens == 1


def test_bucket_retry_after_counts_down():
    clock = FakeClock()
    bucket = TokenBucket(capacity=1, clock=clock)
    bucket.try_consume()

    clock.now += 45.5
    assert bucket.retry_after() == 15


@pytest.mark.parametrize(
    "path, bucket_type",
    [
        ("/api/v1/lectures/5/stream-url", BucketType.STREAMING),
        ("/api/v1/lectures/5/stream", BucketType.GENERAL),
        ("/api/v1/lectures/5/stream-metadata", BucketType.GENERAL),
        ("/api/v1/playlists/manifest", BucketType.PLAYLIST),
        ("/api/v1/admin/cache/playlists", BucketType.ADMIN),
        ("/api/v1/speakers", BucketType.GENERAL),
    ],
)
def test_classify_path(path, bucket_type):
    assert classify_path(path) is bucket_type


def test_limiter_keeps_separate_buckets_per_ip_and_class():
    limiter = RateLimiter(limits={t: 1 for t in BucketType}, clock=FakeClock())

    assert limiter.check("1.1.1.1", BucketType.GENERAL).allowed
    assert not limiter.check("1.1.1.1", BucketType.GENERAL).allowed
    assert limiter.check("1.1.1.1", BucketType.STREAMING).allowed
    assert limiter.check("2.2.2.2", BucketType.GENERAL).allowed


def test_limiter_reports_remaining_and_retry_after():
    clock = FakeClock()
    limiter = RateLimiter(limits={t: 2 for t in BucketType}, clock=clock)

    assert limiter.check("ip", BucketType.ADMIN).remaining == 1
    assert limiter.check("ip", BucketType.ADMIN).remaining == 0

    clock.now += 20
    blocked = limiter.check("ip", BucketType.ADMIN)
    assert blocked.allowed is False
    assert blocked.retry_after == 40


def test_limiter_reset_clears_buckets():
    limiter = RateLimiter(limits={t: 1 for t in BucketType}, clock=FakeClock())
    limiter.check("ip", BucketType.GENERAL)
    limiter.reset()
    assert limiter.check("ip", BucketType.GENERAL).allowed


def test_limiter_sweeps_idle_buckets():
    clock = FakeClock()
    limiter = RateLimiter(limits={t: 1 for t in BucketType}, clock=clock)
    for n in range(50):
        limiter.check(f"10.0.0.{n}", BucketType.GENERAL)
    assert len(limiter) == 50

    clock.now += 30
    limiter.check("active", BucketType.GENERAL)
    assert len(limiter) == 51

    clock.now += 30
    limiter.check("newcomer", BucketType.GENERAL)

    # Only the bucket used within the last period survives, plus the new one
    assert len(limiter) == 2
    assert not limiter.check("active", BucketType.GENERAL).allowed


def test_limiter_caps_tracked_keys():
    limiter = RateLimiter(limits={t: 1 for t in BucketType}, clock=FakeClock(), max_buckets=10)
    for n in range(25):
        limiter.check(f"spoofed-{n}", BucketType.GENERAL)
    assert len(limiter) <= 10


# ============================================================================
# MIDDLEWARE
# ============================================================================


@pytest.fixture()
def limited_client() -> TestClient:
    limiter = RateLimiter(
        limits={
            BucketType.STREAMING: 1,
            BucketType.PLAYLIST: 1,
            BucketType.ADMIN: 1,
            BucketType.GENERAL: 2,
        },
        clock=FakeClock(),
    )
    app = FastAPI()
    register_exception_handlers(app)
    app.add_middleware(RateLimitMiddleware, limiter=limiter)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/v1/speakers")
    def speakers():
        return []

    @app.get("/api/v1/lectures/{lecture_id}/stream")
    def stream(lecture_id: int):
        return {"id": lecture_id}

    @app.get("/api/v1/lectures/{lecture_id}/stream-url")
    def stream_url(lecture_id: int):
        return {"url": f"/api/v1/lectures/{lecture_id}/stream"}

    return TestClient(app)


def test_middleware_returns_429_with_retry_after(limited_client):
    assert limited_client.get("/api/v1/speakers").headers["x-ratelimit-remaining"] == "1"
    assert limited_client.get("/api/v1/speakers").status_code == 200

    response = limited_client.get("/api/v1/speakers")

    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"
    assert response.headers["x-ratelimit-remaining"] == "0"
    body = response.json()
    assert body["error"] == "RATE_LIMITED"
    assert body["status"] == 429
    assert body["path"] == "/api/v1/speakers"


def test_middleware_uses_forwarded_client_address(limited_client):
    limited_client.get("/api/v1/lectures/1/stream-url", headers={"X-Forwarded-For": "203.0.113.1"})
    blocked = limited_client.get(
        "/api/v1/lectures/1/stream-url", headers={"X-Forwarded-For": "203.0.113.1"}
    )
    other = limited_client.get(
        "/api/v1/lectures/1/stream-url", headers={"X-Forwarded-For": "203.0.113.2"}
    )

    assert blocked.status_code == 429
    assert other.status_code == 200


def test_middleware_exempts_health(limited_client):
    for _ in range(5):
        assert limited_client.get("/health").status_code == 200


def test_range_playback_is_not_throttled_as_streaming():
    app = FastAPI()
    register_exception_handlers(app)
    app.add_middleware(RateLimitMiddleware, limiter=RateLimiter(clock=FakeClock()))

    @app.get("/api/v1/lectures/{lecture_id}/stream")
    def stream(lecture_id: int):
        return {"id": lecture_id}

    client = TestClient(app)
    statuses = [
        client.get(
            "/api/v1/lectures/1/stream", headers={"Range": f"bytes={n * 1024}-"}
        ).status_code
        for n in range(25)
    ]

    assert statuses == [200] * 25
