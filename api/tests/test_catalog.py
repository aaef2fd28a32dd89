"""Speaker, collection, lecture and category browsing."""

from __future__ import annotations

import pytest

from elmify import models


def _titles(response) -> list[str]:
    body = response.json()
    items = body["data"] if isinstance(body, dict) else body
    return [item.get("title") or item.get("name") for item in items]


# ============================================================================
# SPEAKERS
# ============================================================================


def test_list_speakers_hides_premium_from_anonymous(client, catalog):
    response = client.get("/api/v1/speakers")

    assert response.status_code == 200
    body = response.json()
    assert [s["name"] for s in body["data"]] == ["Free Speaker"]
    assert body["pagination"]["totalItems"] == 1
    assert body["data"][0]["imageUrl"].startswith(
        "https://storage.test/elmify-audio/speakers/free.jpg"
    )


def test_list_speakers_shows_premium_to_premium_users(client, catalog, premium_user, auth_headers):
    response = client.get("/api/v1/speakers", headers=auth_headers("user_premium"))
    assert _titles(response) == ["Free Speaker", "Premium Speaker"]


def test_list_speakers_hides_premium_from_free_users(client, catalog, auth_headers):
    response = client.get("/api/v1/speakers", headers=auth_headers())
    assert _titles(response) == ["Free Speaker"]


def test_get_premium_speaker_is_404_for_free_users(client, catalog):
    response = client.get(f"/api/v1/speakers/{catalog['premium_speaker']}")
    assert response.status_code == 404
    assert response.json()["error"] == "RESOURCE_NOT_FOUND"


def test_get_unknown_speaker_is_404(client, catalog):
    assert client.get("/api/v1/speakers/999999").status_code == 404


def test_speaker_collections_and_lectures(client, catalog):
    speaker_id = catalog["free_speaker"]

    collections = client.get(f"/api/v1/speakers/{speaker_id}/collections").json()["data"]
    assert [c["title"] for c in collections] == ["Foundations"]
    assert collections[0]["lectureCount"] == 2
    assert collections[0]["speakerName"] == "Free Speaker"

    lectures = client.get(f"/api/v1/speakers/{speaker_id}/lectures")
    assert _titles(lectures) == ["First Steps", "Second Steps"]


def test_premium_speaker_subresources_are_hidden(client, catalog):
    speaker_id = catalog["premium_speaker"]
    assert client.get(f"/api/v1/speakers/{speaker_id}/collections").status_code == 404
    assert client.get(f"/api/v1/speakers/{speaker_id}/lectures").status_code == 404


# ============================================================================
# COLLECTIONS
# ============================================================================


def test_list_collections(client, catalog):
    response = client.get("/api/v1/collections")
    assert _titles(response) == ["Foundations"]


def test_get_collection(client, catalog):
    response = client.get(f"/api/v1/collections/{catalog['free_collection']}")

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Foundations"
    assert body["year"] == 2020
    assert body["lectureCount"] == 2
    assert body["isPremium"] is False
    assert body["coverImageUrl"].startswith(
        "https://storage.test/elmify-audio/Free Speaker/Foundations/collection.jpg"
    )


def test_get_premium_collection(client, catalog, premium_user, auth_headers):
    path = f"/api/v1/collections/{catalog['premium_collection']}"
    assert client.get(path).status_code == 404

    response = client.get(path, headers=auth_headers("user_premium"))
    assert response.status_code == 200
    assert response.json()["isPremium"] is True


# ============================================================================
# LECTURES
# ============================================================================


def test_list_lectures_default_order_is_title(client, catalog):
    response = client.get("/api/v1/lectures")
    assert _titles(response) == ["First Steps", "Second Steps"]


def test_list_lectures_with_sort(client, catalog):
    response = client.get("/api/v1/lectures", params={"sort": "playCount,desc"})
    assert _titles(response) == ["Second Steps", "First Steps"]


@pytest.mark.parametrize("sort", ["password,asc", "title,sideways", ",desc"])
def test_list_lectures_rejects_bad_sort(client, catalog, sort):
    response = client.get("/api/v1/lectures", params={"sort": sort})
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_REQUEST"


def test_list_lectures_pagination(client, catalog):
    response = client.get("/api/v1/lectures", params={"page": 1, "size": 1})

    body = response.json()
    assert [lecture["title"] for lecture in body["data"]] == ["Second Steps"]
    assert body["pagination"] == {
        "currentPage": 1,
        "pageSize": 1,
        "totalItems": 2,
        "totalPages": 2,
        "hasNext": False,
        "hasPrevious": True,
    }


def test_list_lectures_rejects_oversized_page(client, catalog):
    response = client.get("/api/v1/lectures", params={"size": 1000})
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_FAILED"


def test_lecture_detail(client, catalog):
    response = client.get(f"/api/v1/lectures/{catalog['first']}")

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "First Steps"
    assert body["lectureNumber"] == 1
    assert body["duration"] == 1200
    assert body["speakerName"] == "Free Speaker"
    assert body["collectionTitle"] == "Foundations"
    assert body["isPremium"] is False
    # Falls back to the collection cover
    assert "Foundations/collection.jpg" in body["thumbnailUrl"]


def test_premium_lecture_detail(client, catalog, premium_user, auth_headers):
    path = f"/api/v1/lectures/{catalog['premium_lecture']}"
    assert client.get(path).status_code == 404
    assert client.get(path, headers=auth_headers()).status_code == 404

    response = client.get(path, headers=auth_headers("user_premium"))
    assert response.status_code == 200
    assert response.json()["isPremium"] is True


def test_lectures_by_collection_in_album_order(client, catalog, db):
    db.add(
        models.Lecture(
            title="Appendix",
            file_name="Appendix.mp3",
            file_path="Free Speaker/Foundations/Appendix.mp3",
            duration=60,
            speaker_id=catalog["free_speaker"],
            collection_id=catalog["free_collection"],
        )
    )
    db.commit()

    response = client.get(f"/api/v1/lectures/collection/{catalog['free_collection']}")

    assert _titles(response) == ["First Steps", "Second Steps", "Appendix"]


def test_lectures_by_premium_collection_is_404(client, catalog):
    response = client.get(f"/api/v1/lectures/collection/{catalog['premium_collection']}")
    assert response.status_code == 404


def test_lectures_by_speaker(client, catalog):
    response = client.get(f"/api/v1/lectures/speaker/{catalog['free_speaker']}")
    assert _titles(response) == ["First Steps", "Second Steps"]


def test_trending_lectures(client, catalog, premium_user, auth_headers):
    assert _titles(client.get("/api/v1/lectures/trending")) == ["Second Steps", "First Steps"]

    premium = client.get("/api/v1/lectures/trending", headers=auth_headers("user_premium"))
    assert _titles(premium) == ["Deep Dive", "Second Steps", "First Steps"]


def test_popular_lectures_respect_limit(client, catalog):
    response = client.get("/api/v1/lectures/popular", params={"limit": 1})
    assert _titles(response) == ["Second Steps"]


def test_trending_rejects_zero_limit(client, catalog):
    assert client.get("/api/v1/lectures/trending", params={"limit": 0}).status_code == 400


@pytest.mark.parametrize(
    "term, expected",
    [
        ("first", ["First Steps"]),
        ("FOUNDATIONS", ["Second Steps", "First Steps"]),
        ("free speaker", ["Second Steps", "First Steps"]),
        ("deep", []),
    ],
)
def test_search_lectures(client, catalog, term, expected):
    response = client.get("/api/v1/lectures/search", params={"q": term})
    assert response.status_code == 200
    assert _titles(response) == expected


def test_search_finds_premium_for_premium_users(client, catalog, premium_user, auth_headers):
    response = client.get(
        "/api/v1/lectures/search",
        params={"q": "premium"},
        headers=auth_headers("user_premium"),
    )
    assert _titles(response) == ["Deep Dive"]
    assert response.json()["pagination"]["totalItems"] == 1


def test_search_requires_query(client, catalog):
    assert client.get("/api/v1/lectures/search").status_code == 400


# ============================================================================
# CATEGORIES
# ============================================================================


@pytest.fixture()
def categories(db, catalog):
    parent = models.Category(
        name="Spirituality", slug="spirituality", display_order=1, is_featured=True
    )
    other = models.Category(name="History", slug="history", display_order=2)
    hidden = models.Category(name="Hidden", slug="hidden", is_active=False)
    db.add_all([parent, other, hidden])
    db.flush()

    child = models.Category(name="Prayer", slug="prayer", parent_id=parent.id)
    db.add(child)
    db.add_all(
        [
            models.LectureCategory(
                lecture_id=catalog["first"], category_id=parent.id, is_primary=True
            ),
            models.LectureCategory(lecture_id=catalog["premium_lecture"], category_id=parent.id),
            models.CollectionCategory(
                collection_id=catalog["free_collection"], category_id=parent.id
            ),
            models.CollectionCategory(
                collection_id=catalog["premium_collection"], category_id=parent.id
            ),
        ]
    )
    db.commit()
    return {"parent": parent.id, "child": child.id}


def test_list_top_level_categories(client, categories):
    response = client.get("/api/v1/categories")

    assert response.status_code == 200
    assert [c["slug"] for c in response.json()] == ["spirituality", "history"]


def test_featured_categories(client, categories):
    response = client.get("/api/v1/categories/featured")
    assert [c["slug"] for c in response.json()] == ["spirituality"]


def test_category_detail(client, categories):
    response = client.get("/api/v1/categories/spirituality")

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Spirituality"
    assert body["iconName"] == "folder-outline"
    assert [c["slug"] for c in body["subcategories"]] == ["prayer"]
    assert [c["title"] for c in body["featuredCollections"]] == ["Foundations"]


def test_inactive_category_is_404(client, categories):
    response = client.get("/api/v1/categories/hidden")
    assert response.status_code == 404


def test_subcategories(client, categories):
    response = client.get("/api/v1/categories/spirituality/subcategories")
    assert [c["name"] for c in response.json()] == ["Prayer"]


def test_category_lectures_and_collections(client, categories, premium_user, auth_headers):
    assert _titles(client.get("/api/v1/categories/spirituality/lectures")) == ["First Steps"]
    assert _titles(client.get("/api/v1/categories/spirituality/collections")) == ["Foundations"]

    premium = client.get(
        "/api/v1/categories/spirituality/lectures", headers=auth_headers("user_premium")
    )
    assert _titles(premium) == ["First Steps", "Deep Dive"]
