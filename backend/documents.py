import re
import unicodedata
from datetime import datetime
from typing import Dict, List, Optional

import bcrypt
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ALLOWED_USER_ROLES = {ROLE_ADMIN, ROLE_USER}
MAX_PRODUCT_IMAGES = 10
DEFAULT_BCRYPT_ROUNDS = 12

UNIQUE_FIELDS = {
    "users": ("username", "email", "phone"),
    "categories": ("name", "slug"),
    "products": ("slug",),
}


def empty_image() -> Dict[str, str]:
    return {"url": "", "public_id": ""}


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_name(value: Optional[str]) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def slugify(value: Optional[str]) -> str:
    normalized_name = normalize_name(value).lower()
    ascii_name = (
        unicodedata.normalize("NFKD", normalized_name)
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    return re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed)
    except ValueError:
        return False


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def ensure_indexes(db, logger) -> None:
    for collection_name, fields in UNIQUE_FIELDS.items():
        for field in fields:
            try:
                db[collection_name].create_index(field, unique=True)
            except Exception as exc:
                logger.warning(
                    "Unable to ensure unique index %s.%s: %s", collection_name, field, exc
                )

    try:
        db.products.create_index([("category", ASCENDING)])
        db.products.create_index([("price", ASCENDING)])
        db.products.create_index([("inStock", ASCENDING)])
        db.products.create_index([("createdAt", DESCENDING)])
    except Exception as exc:
        logger.warning("Unable to ensure product indexes: %s", exc)


def duplicate_key_field(exc: DuplicateKeyError) -> str:
    """Name of the field whose unique index rejected a write."""
    details = exc.details or {}
    for key in ("keyPattern", "keyValue"):
        pattern = details.get(key)
        if isinstance(pattern, dict) and pattern:
            return next(iter(pattern))

    message = str(details.get("errmsg") or exc)
    match = re.search(r"index: (?:\S+\$)?([A-Za-z]+)_-?1", message)
    if match:
        return match.group(1)
    return "unknown"


# --- Pre-save hooks ---


def build_user_document(fields: Dict, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> Dict:
    now = datetime.utcnow()
    role = str(fields.get("role") or ROLE_USER).strip().lower()
    return {
        "username": str(fields["username"]).strip(),
        "email": normalize_email(fields["email"]),
        "phone": str(fields["phone"]).strip(),
        "password": hash_password(fields["password"], rounds),
        "role": role if role in ALLOWED_USER_ROLES else ROLE_USER,
        "isActive": bool(fields.get("isActive", True)),
        "image": fields.get("image") or empty_image(),
        "createdAt": now,
        "updatedAt": now,
    }


def prepare_user_update(changes: Dict, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> Dict:
    updates = dict(changes)
    if "password" in updates:
        updates["password"] = hash_password(updates["password"], rounds)
    if "email" in updates:
        updates["email"] = normalize_email(updates["email"])
    updates["updatedAt"] = datetime.utcnow()
    return updates


def build_category_document(fields: Dict) -> Dict:
    now = datetime.utcnow()
    name = normalize_name(fields["name"])
    slug = str(fields.get("slug") or "").strip().lower() or slugify(name)
    return {
        "name": name,
        "slug": slug,
        "description": str(fields.get("description") or "").strip(),
        "image": fields.get("image") or empty_image(),
        "createdAt": now,
        "updatedAt": now,
    }


def prepare_category_update(changes: Dict) -> Dict:
    updates = dict(changes)
    if "name" in updates:
        updates["name"] = normalize_name(updates["name"])
    if "slug" in updates:
        updates["slug"] = str(updates["slug"]).strip().lower()
    if "description" in updates:
        updates["description"] = str(updates["description"] or "").strip()
    updates["updatedAt"] = datetime.utcnow()
    return updates


def build_product_document(fields: Dict) -> Dict:
    now = datetime.utcnow()
    name = normalize_name(fields["name"])
    stock = int(fields.get("stock") or 0)
    images = list(fields.get("images") or [])
    if len(images) > MAX_PRODUCT_IMAGES:
        raise ValueError(f"Cannot upload more than {MAX_PRODUCT_IMAGES} images")

    return {
        "name": name,
        "slug": slugify(name),
        "description": str(fields["description"]).strip(),
        "price": float(fields["price"]),
        "tags": list(fields.get("tags") or []),
        "color": list(fields.get("color") or []),
        "thumbnail": fields.get("thumbnail") or empty_image(),
        "images": images,
        "stock": stock,
        "category": to_object_id(fields["category"]),
        "size": list(fields.get("size") or []),
        "inStock": stock > 0,
        "totalStock": int(fields.get("totalStock") or 0),
        "totalSold": int(fields.get("totalSold") or 0),
        "createdAt": now,
        "updatedAt": now,
    }


def prepare_product_update(changes: Dict) -> Dict:
    updates = dict(changes)
    if "name" in updates:
        updates["name"] = normalize_name(updates["name"])
        updates["slug"] = slugify(updates["name"])
    if "category" in updates:
        updates["category"] = to_object_id(updates["category"])
    if "price" in updates:
        updates["price"] = float(updates["price"])
    if "stock" in updates:
        updates["stock"] = int(updates["stock"])
        updates["inStock"] = updates["stock"] > 0
    if "images" in updates and len(updates["images"]) > MAX_PRODUCT_IMAGES:
        raise ValueError(f"Cannot upload more than {MAX_PRODUCT_IMAGES} images")
    updates["updatedAt"] = datetime.utcnow()
    return updates


# --- Serializers ---


def isoformat(value) -> Optional[str]:
    return value.isoformat() + "Z" if isinstance(value, datetime) else None


def serialize_image(value) -> Dict[str, str]:
    if not isinstance(value, dict):
        return empty_image()
    return {
        "url": str(value.get("url") or ""),
        "public_id": str(value.get("public_id") or ""),
    }


def serialize_user(user_document) -> Dict:
    if not user_document:
        return {}

    return {
        "id": str(user_document.get("_id")),
        "username": user_document.get("username", "") or "",
        "email": user_document.get("email", "") or "",
        "phone": user_document.get("phone", "") or "",
        "role": user_document.get("role", ROLE_USER) or ROLE_USER,
        "isActive": bool(user_document.get("isActive", True)),
        "image": serialize_image(user_document.get("image")),
        "createdAt": isoformat(user_document.get("createdAt")),
        "updatedAt": isoformat(user_document.get("updatedAt")),
    }


def serialize_category(category_document) -> Dict:
    if not category_document:
        return {}

    return {
        "id": str(category_document.get("_id")),
        "name": category_document.get("name", ""),
        "slug": category_document.get("slug", ""),
        "description": category_document.get("description", "") or "",
        "image": serialize_image(category_document.get("image")),
        "createdAt": isoformat(category_document.get("createdAt")),
        "updatedAt": isoformat(category_document.get("updatedAt")),
    }


def serialize_product(product_document, category_map: Optional[Dict] = None) -> Dict:
    if not product_document:
        return {}

    category_id = product_document.get("category")
    category_document = (category_map or {}).get(category_id)
    category = (
        {
            "id": str(category_document.get("_id")),
            "name": category_document.get("name", ""),
            "slug": category_document.get("slug", ""),
        }
        if category_document
        else (str(category_id) if category_id else None)
    )

    images: List[Dict[str, str]] = []
    raw_images = product_document.get("images")
    if isinstance(raw_images, list):
        images = [serialize_image(image) for image in raw_images]

    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "slug": product_document.get("slug", ""),
        "description": product_document.get("description", "") or "",
        "price": float(product_document.get("price", 0) or 0),
        "tags": list(product_document.get("tags") or []),
        "color": list(product_document.get("color") or []),
        "thumbnail": serialize_image(product_document.get("thumbnail")),
        "images": images,
        "stock": int(product_document.get("stock", 0) or 0),
        "category": category,
        "size": list(product_document.get("size") or []),
        "inStock": bool(product_document.get("inStock")),
        "totalStock": int(product_document.get("totalStock", 0) or 0),
        "totalSold": int(product_document.get("totalSold", 0) or 0),
        "createdAt": isoformat(product_document.get("createdAt")),
        "updatedAt": isoformat(product_document.get("updatedAt")),
    }
