from datetime import datetime

from bson import ObjectId

from conftest import API


def test_list_categories_is_public_and_newest_first(client, make_category):
    make_category("Older", created_at=datetime(2024, 1, 1))
    make_category("Newer", created_at=datetime(2024, 6, 1))

    response = client.get(f"{API}/categories")

    assert response.status_code == 200
    names = [category["name"] for category in response.get_json()["data"]["categories"]]
    assert names == ["Newer", "Older"]


def test_create_category_derives_slug(client, admin_headers):
    response = client.post(
        f"{API}/categories",
        json={"name": "Summer Shoes", "description": "Sandals and more"},
        headers=admin_headers,
    )

    assert response.status_code == 201
    category = response.get_json()["data"]["category"]
    assert category["slug"] == "summer-shoes"
    assert category["image"] == {"url": "", "public_id": ""}


def test_create_category_lowercases_explicit_slug(client, admin_headers):
    response = client.post(
        f"{API}/categories", json={"name": "Outdoor", "slug": "Camp-Kit"}, headers=admin_headers
    )

    assert response.status_code == 201
    assert response.get_json()["data"]["category"]["slug"] == "camp-kit"


def test_create_category_duplicate_name(client, admin_headers, make_category):
    make_category("Summer Shoes")

    response = client.post(
        f"{API}/categories", json={"name": "Summer Shoes"}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["field"] == "name"


def test_create_category_duplicate_slug(client, admin_headers, make_category):
    make_category("Summer Shoes")

    response = client.post(
        f"{API}/categories", json={"name": "summer shoes!"}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["field"] == "slug"


def test_create_category_name_without_letters(client, admin_headers):
    response = client.post(f"{API}/categories", json={"name": "!!!"}, headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["field"] == "name"


def test_get_category(client, make_category):
    category = make_category("Bags")

    response = client.get(f"{API}/categories/{category['_id']}")

    assert response.status_code == 200
    assert response.get_json()["data"]["category"]["name"] == "Bags"


def test_get_missing_category(client):
    response = client.get(f"{API}/categories/{ObjectId()}")

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["field"] == "id"


def test_update_category_partially(client, admin_headers, make_category):
    category = make_category("Bags", description="Old")

    response = client.put(
        f"{API}/categories/{category['_id']}",
        json={"description": "Totes and backpacks"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    updated = response.get_json()["data"]["category"]
    assert updated["description"] == "Totes and backpacks"
    assert updated["name"] == "Bags"
    assert updated["slug"] == "bags"


def test_update_category_keeping_its_own_name(client, admin_headers, make_category):
    category = make_category("Bags")

    response = client.put(
        f"{API}/categories/{category['_id']}", json={"name": "Bags"}, headers=admin_headers
    )

    assert response.status_code == 200


def test_update_category_name_collision(client, admin_headers, make_category):
    make_category("Shoes")
    category = make_category("Bags")

    response = client.put(
        f"{API}/categories/{category['_id']}", json={"name": "Shoes"}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["field"] == "name"


def test_update_missing_category(client, admin_headers):
    response = client.put(
        f"{API}/categories/{ObjectId()}", json={"name": "Ghost"}, headers=admin_headers
    )

    assert response.status_code == 400


def test_delete_category(client, admin_headers, make_category):
    category = make_category("Bags")
    url = f"{API}/categories/{category['_id']}"

    assert client.delete(url, headers=admin_headers).status_code == 200
    assert client.get(url).status_code == 400
    assert client.delete(url, headers=admin_headers).status_code == 400


def test_mutations_require_admin(client, shopper_headers, make_category):
    category = make_category("Bags")
    url = f"{API}/categories/{category['_id']}"

    assert client.put(url, json={"name": "Totes"}, headers=shopper_headers).status_code == 403
    assert client.delete(url, headers=shopper_headers).status_code == 403


def test_repeating_a_create_is_rejected_on_name(client, admin_headers):
    payload = {"name": "Shoes", "slug": "shoes"}

    first = client.post(f"{API}/categories", json=payload, headers=admin_headers)
    second = client.post(f"{API}/categories", json=payload, headers=admin_headers)

    assert first.status_code == 201
    assert first.get_json()["data"]["category"]["slug"] == "shoes"
    assert second.status_code == 400
    assert second.get_json()["errors"][0]["field"] == "name"


def test_blank_slug_is_rejected(client, admin_headers, make_category):
    category = make_category("Bags")

    updated = client.put(
        f"{API}/categories/{category['_id']}", json={"slug": "   "}, headers=admin_headers
    )
    created = client.post(
        f"{API}/categories", json={"name": "Hats", "slug": "   "}, headers=admin_headers
    )

    assert updated.status_code == 422
    assert updated.get_json()["errors"][0]["field"] == "slug"
    assert created.status_code == 422
    assert client.get(f"{API}/categories/{category['_id']}").get_json()["data"]["category"][
        "slug"
    ] == "bags"


def test_blank_name_is_rejected(client, admin_headers):
    response = client.post(f"{API}/categories", json={"name": "   "}, headers=admin_headers)

    assert response.status_code == 422
    assert response.get_json()["errors"][0]["field"] == "name"
