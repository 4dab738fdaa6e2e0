import io

import cloudinary.uploader
import pytest

from app import create_app
from conftest import API, base_config
from media import is_valid_image_header

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def uploads(monkeypatch):
    calls = []

    def fake_upload(content, **options):
        calls.append({"content": content, **options})
        return {
            "secure_url": "https://res.cloudinary.com/demo/image/upload/products/photo.png",
            "public_id": "products/photo",
        }

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    return calls


def upload(client, headers, content=PNG_BYTES, filename="photo.png", mimetype="image/png", **form):
    data = {"file": (io.BytesIO(content), filename, mimetype), **form}
    return client.post(
        f"{API}/image/upload", data=data, headers=headers, content_type="multipart/form-data"
    )


def test_upload_image(client, shopper_headers, uploads):
    response = upload(client, shopper_headers)

    assert response.status_code == 200
    assert response.get_json()["data"] == {
        "url": "https://res.cloudinary.com/demo/image/upload/products/photo.png",
        "public_id": "products/photo",
    }
    assert uploads[0]["folder"] == "products"
    assert uploads[0]["content"] == PNG_BYTES


def test_upload_image_into_folder(client, shopper_headers, uploads):
    response = upload(client, shopper_headers, folder="banners")

    assert response.status_code == 200
    assert uploads[0]["folder"] == "banners"


def test_upload_requires_authentication(client, uploads):
    response = upload(client, {})

    assert response.status_code == 401
    assert uploads == []


def test_upload_without_file(client, shopper_headers, uploads):
    response = client.post(f"{API}/image/upload", data={}, headers=shopper_headers)

    assert response.status_code == 400
    assert response.get_json()["message"] == "Image upload failed"


@pytest.mark.parametrize(
    "content, filename, mimetype",
    [
        (PNG_BYTES, "notes.txt", "text/plain"),
        (PNG_BYTES, "photo.png", "application/octet-stream"),
        (b"definitely not an image", "photo.png", "image/png"),
    ],
)
def test_upload_rejects_invalid_files(client, shopper_headers, uploads, content, filename, mimetype):
    response = upload(client, shopper_headers, content, filename, mimetype)

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["field"] == "file"
    assert uploads == []


def test_upload_failure_from_media_host(client, shopper_headers, monkeypatch):
    def broken_upload(content, **options):
        raise RuntimeError("network unreachable")

    monkeypatch.setattr(cloudinary.uploader, "upload", broken_upload)

    response = upload(client, shopper_headers)

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["message"] == "network unreachable"


def test_upload_without_credentials(db, make_user, headers_for):
    app = create_app(
        base_config(
            CLOUDINARY_CLOUD_NAME=None, CLOUDINARY_API_KEY=None, CLOUDINARY_API_SECRET=None
        ),
        database=db,
    )
    response = upload(app.test_client(), headers_for(make_user()))

    assert response.status_code == 503


@pytest.mark.parametrize("outcome, status", [("ok", 200), ("not found", 400)])
def test_delete_image(client, shopper_headers, monkeypatch, outcome, status):
    destroyed = []

    def fake_destroy(public_id, **options):
        destroyed.append(public_id)
        return {"result": outcome}

    monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)

    response = client.post(
        f"{API}/image/delete", json={"public_id": "products/photo"}, headers=shopper_headers
    )

    assert response.status_code == status
    assert destroyed == ["products/photo"]


def test_delete_image_requires_public_id(client, shopper_headers):
    response = client.post(f"{API}/image/delete", json={}, headers=shopper_headers)

    assert response.status_code == 422
    assert response.get_json()["errors"][0]["field"] == "public_id"


@pytest.mark.parametrize(
    "content, valid",
    [
        (PNG_BYTES, True),
        (b"\xff\xd8\xff\xe0" + b"\x00" * 12, True),
        (b"GIF89a" + b"\x00" * 10, True),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", True),
        (b"%PDF-1.7 something", False),
        (b"\x89PNG", False),
    ],
)
def test_image_header_detection(content, valid):
    assert is_valid_image_header(content) is valid
