from datetime import datetime, timedelta

import mongomock
import pytest

from app import create_app
from documents import build_category_document, build_product_document, build_user_document
from security import issue_token

API = "/api/v1"
ADMIN_EMAIL = "owner@example.com"
STRONG_PASSWORD = "Str0ng!Pass"
TEST_ROUNDS = 4


def base_config(**overrides):
    config = {
        "TESTING": True,
        "JWT_SECRET_KEY": "test-secret",
        "BCRYPT_ROUNDS": TEST_ROUNDS,
        "RATELIMIT_ENABLED": False,
        "RATE_LIMIT_EXEMPT_IPS": "",
        "DEFAULT_ADMIN_EMAIL": ADMIN_EMAIL,
        "CLOUDINARY_CLOUD_NAME": "demo",
        "CLOUDINARY_API_KEY": "key",
        "CLOUDINARY_API_SECRET": "secret",
        "API_VERSION": "v1",
        "PROJECT_NAME": "E-commerce Backend",
    }
    config.update(overrides)
    return config


def image(name="photo"):
    return {
        "url": f"https://res.cloudinary.com/demo/image/upload/{name}.jpg",
        "public_id": f"products/{name}",
    }


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def app(db):
    return create_app(base_config(), database=db)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(db):
    counter = {"value": 0}

    def _make_user(role="user", is_active=True, password=STRONG_PASSWORD, **fields):
        counter["value"] += 1
        number = counter["value"]
        document = build_user_document(
            {
                "username": fields.get("username", f"shopper{number}"),
                "email": fields.get("email", f"shopper{number}@example.com"),
                "phone": fields.get("phone", f"555000{number:04d}"),
                "password": password,
                "role": role,
                "isActive": is_active,
            },
            TEST_ROUNDS,
        )
        document["_id"] = db.users.insert_one(document).inserted_id
        return document

    return _make_user


@pytest.fixture
def headers_for(app):
    def _headers_for(user):
        with app.app_context():
            token = issue_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _headers_for


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", username="admin", email="admin@example.com")


@pytest.fixture
def admin_headers(admin, headers_for):
    return headers_for(admin)


@pytest.fixture
def shopper(make_user):
    return make_user()


@pytest.fixture
def shopper_headers(shopper, headers_for):
    return headers_for(shopper)


@pytest.fixture
def make_category(db):
    def _make_category(name, created_at=None, **fields):
        document = build_category_document({"name": name, **fields})
        if created_at is not None:
            document["createdAt"] = created_at
        document["_id"] = db.categories.insert_one(document).inserted_id
        return document

    return _make_category


@pytest.fixture
def make_product(db):
    base_time = datetime(2024, 1, 1)
    counter = {"value": 0}

    def _make_product(name, category, price=10.0, stock=5, size=None, **fields):
        counter["value"] += 1
        document = build_product_document(
            {
                "name": name,
                "description": fields.get("description", f"{name} description"),
                "price": price,
                "stock": stock,
                "category": category["_id"],
                "size": size or [],
                "thumbnail": image(f"thumb{counter['value']}"),
                "images": [image(f"image{counter['value']}")],
            }
        )
        document["createdAt"] = base_time + timedelta(minutes=counter["value"])
        document["_id"] = db.products.insert_one(document).inserted_id
        return document

    return _make_product
