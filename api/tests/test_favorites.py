"""Favorite lectures."""

from __future__ import annotations

from elmify import models


def test_favorites_require_auth(client, catalog):
    assert client.get("/api/v1/favorites").status_code == 401
    assert client.post(f"/api/v1/favorites/{catalog['first']}").status_code == 401


def test_add_favorite(client, catalog, auth_headers):
    response = client.post(f"/api/v1/favorites/{catalog['first']}", headers=auth_headers())

    assert response.status_code == 201
    body = response.json()
    assert body["lectureId"] == catalog["first"]
    assert body["lecture"]["title"] == "First Steps"


def test_add_favorite_twice_returns_existing(client, catalog, auth_headers, db):
    headers = auth_headers()
    first = client.post(f"/api/v1/favorites/{catalog['first']}", headers=headers)
    second = client.post(f"/api/v1/favorites/{catalog['first']}", headers=headers)

    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert db.query(models.Favorite).count() == 1


def test_add_favorite_unknown_lecture_is_404(client, catalog, auth_headers):
    response = client.post("/api/v1/favorites/999999", headers=auth_headers())
    assert response.status_code == 404


def test_add_premium_favorite_requires_premium(client, catalog, premium_user, auth_headers):
    path = f"/api/v1/favorites/{catalog['premium_lecture']}"

    denied = client.post(path, headers=auth_headers())
    assert denied.status_code == 403
    assert denied.json()["error"] == "ACCESS_DENIED"

    assert client.post(path, headers=auth_headers("user_premium")).status_code == 201


def test_list_count_and_check(client, catalog, auth_headers):
    headers = auth_headers()
    client.post(f"/api/v1/favorites/{catalog['first']}", headers=headers)
    client.post(f"/api/v1/favorites/{catalog['second']}", headers=headers)

    listing = client.get("/api/v1/favorites", headers=headers).json()
    assert {f["lectureId"] for f in listing["data"]} == {catalog["first"], catalog["second"]}
    assert listing["pagination"]["totalItems"] == 2

    assert client.get("/api/v1/favorites/count", headers=headers).json() == {"count": 2}
    check = client.get(f"/api/v1/favorites/check/{catalog['first']}", headers=headers)
    assert check.json() == {"isFavorited": True}


def test_favorites_are_per_user(client, catalog, auth_headers):
    client.post(f"/api/v1/favorites/{catalog['first']}", headers=auth_headers("user_a"))

    other = auth_headers("user_b")
    assert client.get("/api/v1/favorites/count", headers=other).json() == {"count": 0}
    check = client.get(f"/api/v1/favorites/check/{catalog['first']}", headers=other)
    assert check.json() == {"isFavorited": False}


def test_remove_favorite(client, catalog, auth_headers):
    headers = auth_headers()
    client.post(f"/api/v1/favorites/{catalog['first']}", headers=headers)

    response = client.delete(f"/api/v1/favorites/{catalog['first']}", headers=headers)
    assert response.status_code == 204
    assert client.get("/api/v1/favorites/count", headers=headers).json() == {"count": 0}

    # Removing again is a no-op
    again = client.delete(f"/api/v1/favorites/{catalog['first']}", headers=headers)
    assert again.status_code == 204
