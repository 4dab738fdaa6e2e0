import os
from typing import Dict, List, Optional

from bson import ObjectId
from dotenv import load_dotenv
from flask import Flask, g, request
from flask_cors import CORS
from flask_pymongo import PyMongo
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from documents import (
    DEFAULT_BCRYPT_ROUNDS,
    ROLE_ADMIN,
    build_category_document,
    build_product_document,
    build_user_document,
    check_password,
    duplicate_key_field,
    ensure_indexes,
    normalize_email,
    prepare_category_update,
    prepare_product_update,
    prepare_user_update,
    serialize_category,
    serialize_product,
    serialize_user,
    to_object_id,
)
from media import MediaService
from rate_limits import RateLimits, breach_message
from responses import (
    bad_request,
    created,
    error_response,
    field_error,
    forbidden,
    internal_error,
    paginated,
    rate_limited,
    success_response,
)
from schemas import (
    CategoryCreateBody,
    CategoryUpdateBody,
    ImageDeleteBody,
    LoginBody,
    ObjectIdParams,
    PaginationQuery,
    PasswordChangeBody,
    ProductCreateBody,
    ProductQuery,
    ProductUpdateBody,
    SignupBody,
    SlugParams,
    UserIdParams,
    UserStatusBody,
    UserUpdateBody,
)
from security import (
    INACTIVE_USER_MESSAGE,
    authenticate,
    init_jwt,
    issue_token,
    parse_token_lifetime,
    require_admin,
    require_ownership,
)
from validation import validate

load_dotenv()

DEFAULT_JWT_SECRET = "change-me-in-production"
FIELD_LABELS = {
    "email": "Email",
    "phone": "Phone number",
    "username": "Username",
    "name": "Name",
    "slug": "Slug",
}
PRODUCT_SORT_FIELDS = {"createdAt": "createdAt", "price": "price", "name": "name"}


def env_flag(name: str, default: bool) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() not in {"0", "false", "no", "off", ""}


def build_product_filter(query: ProductQuery) -> Dict:
    """Conjunctive Mongo filter for the product listing query string."""
    product_filter: Dict[str, object] = {}

    if query.categories:
        product_filter["category"] = {
            "$in": [ObjectId(category_id) for category_id in query.categories]
        }

    if query.minPrice is not None or query.maxPrice is not None:
        price_filter: Dict[str, float] = {}
        if query.minPrice is not None:
            price_filter["$gte"] = query.minPrice
        if query.maxPrice is not None:
            price_filter["$lte"] = query.maxPrice
        product_filter["price"] = price_filter

    if query.sizes:
        product_filter["size"] = {"$in": list(query.sizes)}

    if query.inStock:
        product_filter["inStock"] = True

    return product_filter


def create_app(test_config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # --- Configuration ---
    app.config["PROJECT_NAME"] = os.getenv("PROJECT_NAME", "E-commerce Backend")
    app.config["API_VERSION"] = os.getenv("API_VERSION", "v1")
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = parse_token_lifetime(
        os.getenv("JWT_EXPIRES_IN", "7d")
    )
    app.config["JWT_IDENTITY_CLAIM"] = "userId"
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/ecommerce"
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["CLOUDINARY_CLOUD_NAME"] = os.getenv("CLOUDINARY_CLOUD_NAME")
    app.config["CLOUDINARY_API_KEY"] = os.getenv("CLOUDINARY_API_KEY")
    app.config["CLOUDINARY_API_SECRET"] = os.getenv("CLOUDINARY_API_SECRET")
    app.config["CORS_ORIGIN"] = os.getenv("CORS_ORIGIN", "*")
    app.config["RATELIMIT_ENABLED"] = env_flag("RATELIMIT_ENABLED", True)
    app.config["RATE_LIMIT_EXEMPT_IPS"] = os.getenv("RATE_LIMIT_EXEMPT_IPS", "")
    app.config["TRUSTED_PROXY_HOPS"] = os.getenv("TRUSTED_PROXY_HOPS", "1")
    app.config["BCRYPT_ROUNDS"] = int(os.getenv("BCRYPT_ROUNDS", str(DEFAULT_BCRYPT_ROUNDS)))
    app.config["DEFAULT_ADMIN_EMAIL"] = normalize_email(os.getenv("DEFAULT_ADMIN_EMAIL"))

    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Honor proxy headers so rate limits key on the real client address.
    try:
        trusted_proxy_hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    if app.config["JWT_SECRET_KEY"] == DEFAULT_JWT_SECRET:
        app.logger.warning("JWT_SECRET is not set; using the insecure development secret.")

    # --- Initialize extensions ---
    cors_origins = [
        origin.strip()
        for origin in str(app.config["CORS_ORIGIN"] or "").split(",")
        if origin.strip()
    ]
    if not cors_origins or "*" in cors_origins:
        cors_origins = "*"
    CORS(app, origins=cors_origins)

    if database is None:
        mongo = PyMongo(app, serverSelectionTimeoutMS=5000)
        database = mongo.db
    db = database
    ensure_indexes(db, app.logger)

    init_jwt(app, db)
    rate_limits = RateLimits(app)
    media = MediaService.from_config(app.config, app.logger)

    api_prefix = f"/api/{app.config['API_VERSION']}"
    bcrypt_rounds = app.config["BCRYPT_ROUNDS"]
    default_admin_email = app.config["DEFAULT_ADMIN_EMAIL"]

    # --- Helpers ---

    def duplicate_error(field: str):
        message = f"{FIELD_LABELS.get(field, field.capitalize())} already exists"
        return bad_request(message, [field_error(field, message, "duplicate")])

    def missing_error(label: str, field: str = "id"):
        message = f"{label} not found"
        return bad_request(message, [field_error(field, message, "not_found")])

    def is_taken(collection, field: str, value, exclude_id=None) -> bool:
        query: Dict[str, object] = {field: value}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        return collection.find_one(query) is not None

    def categories_by_ids(category_ids) -> Dict[ObjectId, Dict]:
        normalized_ids: List[ObjectId] = []
        for value in category_ids:
            object_id = to_object_id(value)
            if object_id is not None and object_id not in normalized_ids:
                normalized_ids.append(object_id)
        if not normalized_ids:
            return {}
        return {
            document["_id"]: document
            for document in db.categories.find({"_id": {"$in": normalized_ids}})
        }

    def present_products(product_documents) -> List[Dict]:
        category_map = categories_by_ids(
            document.get("category") for document in product_documents
        )
        return [
            serialize_product(document, category_map=category_map)
            for document in product_documents
        ]

    def present_product(product_document) -> Dict:
        return present_products([product_document])[0]

    # --- Request lifecycle ---

    @app.after_request
    def log_request(response):
        log = app.logger.warning if response.status_code >= 400 else app.logger.info
        log(
            "%s %s %s %s",
            request.method,
            request.full_path.rstrip("?"),
            response.status_code,
            request.remote_addr,
        )
        return response

    @app.errorhandler(429)
    def handle_rate_limit(exc):
        app.logger.warning(
            "Rate limit exceeded for %s on %s %s: %s",
            request.remote_addr,
            request.method,
            request.path,
            exc.description,
        )
        return rate_limited(breach_message(exc.description))

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        if exc.code == 404:
            return error_response(f"Route {request.method} {request.path} not found", 404)
        return error_response(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(exc):
        field = duplicate_key_field(exc)
        app.logger.warning("Unique index rejected write on %s: %s", field, exc)
        return duplicate_error(field)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return internal_error()

    # --- ROUTES ---

    @app.route("/health")
    def health():
        return success_response(
            {"version": app.config["API_VERSION"]},
            f"{app.config['PROJECT_NAME']} is running",
        )

    # Auth
    @app.route(f"{api_prefix}/signup", methods=["POST"])
    @rate_limits.policy("auth")
    @validate(body=SignupBody)
    def signup():
        payload = g.body
        for field in ("email", "phone", "username"):
            if is_taken(db.users, field, getattr(payload, field)):
                return duplicate_error(field)

        fields = payload.model_dump()
        if default_admin_email and payload.email == default_admin_email:
            fields["role"] = ROLE_ADMIN

        user_document = build_user_document(fields, bcrypt_rounds)
        insert_result = db.users.insert_one(user_document)
        user_document["_id"] = insert_result.inserted_id

        app.logger.info("Registered user %s", insert_result.inserted_id)
        return created(
            {"user": serialize_user(user_document), "token": issue_token(user_document)},
            "User created successfully",
        )

    @app.route(f"{api_prefix}/login", methods=["POST"])
    @rate_limits.policy("auth")
    @validate(body=LoginBody)
    def login():
        payload = g.body
        user = db.users.find_one({"email": payload.email})
        if not user:
            return bad_request(
                "Invalid email or password",
                [field_error("email", "Invalid credentials")],
            )

        if not check_password(payload.password, user.get("password")):
            app.logger.warning("Failed login for user %s", user["_id"])
            return bad_request(
                "Invalid email or password",
                [field_error("password", "Invalid credentials")],
            )

        if not user.get("isActive", True):
            return forbidden(INACTIVE_USER_MESSAGE)

        token = issue_token(user)
        return success_response(
            {"user": serialize_user(user), "token": token}, "Login successful"
        )

    # Images
    @app.route(f"{api_prefix}/image/upload", methods=["POST"])
    @rate_limits.policy("upload")
    @authenticate
    def upload_image():
        if not media.configured:
            return error_response("Image service is not configured", 503)

        image_file = request.files.get("file")
        if not image_file or not getattr(image_file, "filename", ""):
            return bad_request(
                "Image upload failed", [field_error("file", "An image file is required.")]
            )

        content = image_file.read()
        validation_message = media.validate_image(
            content, image_file.filename, image_file.mimetype
        )
        if validation_message:
            return bad_request(
                "Image upload failed", [field_error("file", validation_message)]
            )

        uploaded, upload_error = media.upload_image(
            content, image_file.filename, request.form.get("folder")
        )
        if upload_error:
            return bad_request("Image upload failed", [field_error("file", upload_error)])

        return success_response(uploaded, "Image uploaded successfully")

    @app.route(f"{api_prefix}/image/delete", methods=["POST"])
    @authenticate
    @validate(body=ImageDeleteBody)
    def delete_image():
        if not media.configured:
            return error_response("Image service is not configured", 503)

        public_id = g.body.public_id
        deleted, delete_error = media.delete_image(public_id)
        if not deleted:
            return bad_request(
                "Image delete failed", [field_error("public_id", delete_error or "Delete failed")]
            )

        return success_response({"public_id": public_id}, "Image deleted successfully")

    # Categories
    @app.route(f"{api_prefix}/categories", methods=["GET"])
    def list_categories():
        category_documents = db.categories.find().sort("createdAt", DESCENDING)
        categories = [serialize_category(document) for document in category_documents]
        return success_response({"categories": categories}, "Categories fetched successfully")

    @app.route(f"{api_prefix}/categories/<id>", methods=["GET"])
    @validate(params=ObjectIdParams)
    def get_category(id: str):
        category_document = db.categories.find_one({"_id": ObjectId(g.params.id)})
        if not category_document:
            return missing_error("Category")
        return success_response(
            {"category": serialize_category(category_document)},
            "Category fetched successfully",
        )

    @app.route(f"{api_prefix}/categories", methods=["POST"])
    @rate_limits.policy("create")
    @authenticate
    @require_admin
    @validate(body=CategoryCreateBody)
    def create_category():
        fields = g.body.model_dump()
        category_document = build_category_document(fields)
        if not category_document["slug"]:
            return bad_request(
                "Category slug could not be derived",
                [field_error("name", "Name must contain at least one letter or number")],
            )

        if is_taken(db.categories, "name", category_document["name"]):
            return duplicate_error("name")
        if is_taken(db.categories, "slug", category_document["slug"]):
            return duplicate_error("slug")

        insert_result = db.categories.insert_one(category_document)
        category_document["_id"] = insert_result.inserted_id

        app.logger.info(
            "Created category %s (%s)", category_document["name"], insert_result.inserted_id
        )
        return created(
            {"category": serialize_category(category_document)},
            "Category created successfully",
        )

    @app.route(f"{api_prefix}/categories/<id>", methods=["PUT"])
    @rate_limits.policy("admin")
    @authenticate
    @require_admin
    @validate(params=ObjectIdParams, body=CategoryUpdateBody)
    def update_category(id: str):
        category_id = ObjectId(g.params.id)
        category_document = db.categories.find_one({"_id": category_id})
        if not category_document:
            return missing_error("Category")

        changes = {
            key: value
            for key, value in g.body.model_dump(exclude_unset=True).items()
            if value is not None
        }
        updates = prepare_category_update(changes)

        name = updates.get("name")
        if name and name != category_document.get("name"):
            if is_taken(db.categories, "name", name, exclude_id=category_id):
                return duplicate_error("name")

        slug = updates.get("slug")
        if slug and slug != category_document.get("slug"):
            if is_taken(db.categories, "slug", slug, exclude_id=category_id):
                return duplicate_error("slug")

        db.categories.update_one({"_id": category_id}, {"$set": updates})
        updated_category = db.categories.find_one({"_id": category_id})

        return success_response(
            {"category": serialize_category(updated_category)},
            "Category updated successfully",
        )

    @app.route(f"{api_prefix}/categories/<id>", methods=["DELETE"])
    @rate_limits.policy("admin")
    @authenticate
    @require_admin
    @validate(params=ObjectIdParams)
    def delete_category(id: str):
        deleted = db.categories.find_one_and_delete({"_id": ObjectId(g.params.id)})
        if not deleted:
            return missing_error("Category")

        app.logger.info("Deleted category %s", deleted["_id"])
        return success_response({}, "Category deleted successfully")

    # Products
    @app.route(f"{api_prefix}/products", methods=["GET"])
    @validate(query=ProductQuery)
    def list_products():
        query = g.query
        product_filter = build_product_filter(query)
        direction = ASCENDING if query.order == "asc" else DESCENDING

        total = db.products.count_documents(product_filter)
        cursor = (
            db.products.find(product_filter)
            .sort(PRODUCT_SORT_FIELDS[query.sort], direction)
            .skip((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        products = present_products(list(cursor))

        return paginated(
            {"products": products},
            total,
            query.page,
            query.limit,
            "Products fetched successfully",
        )

    @app.route(f"{api_prefix}/products/slug/<slug>", methods=["GET"])
    @validate(params=SlugParams)
    def get_product_by_slug(slug: str):
        product_document = db.products.find_one({"slug": g.params.slug.strip().lower()})
        if not product_document:
            return missing_error("Product", "slug")
        return success_response(
            {"product": present_product(product_document)}, "Product fetched successfully"
        )

    @app.route(f"{api_prefix}/products/<id>", methods=["GET"])
    @validate(params=ObjectIdParams)
    def get_product(id: str):
        product_document = db.products.find_one({"_id": ObjectId(g.params.id)})
        if not product_document:
            return missing_error("Product")
        return success_response(
            {"product": present_product(product_document)}, "Product fetched successfully"
        )

    @app.route(f"{api_prefix}/products", methods=["POST"])
    @rate_limits.policy("create")
    @authenticate
    @require_admin
    @validate(body=ProductCreateBody)
    def create_product():
        payload = g.body
        if not db.categories.find_one({"_id": ObjectId(payload.category)}):
            return bad_request(
                "Category not found", [field_error("category", "Invalid category ID")]
            )

        fields = payload.model_dump()
        fields["thumbnail"] = payload.thumbnail.as_document()
        fields["images"] = [image.as_document() for image in payload.images]
        product_document = build_product_document(fields)

        if not product_document["slug"]:
            return bad_request(
                "Product slug could not be derived",
                [field_error("name", "Name must contain at least one letter or number")],
            )
        if is_taken(db.products, "name", product_document["name"]):
            return duplicate_error("name")
        if is_taken(db.products, "slug", product_document["slug"]):
            return duplicate_error("slug")

        insert_result = db.products.insert_one(product_document)
        product_document["_id"] = insert_result.inserted_id

        app.logger.info(
            "Created product %s (%s)", product_document["name"], insert_result.inserted_id
        )
        return created(
            {"product": present_product(product_document)}, "Product created successfully"
        )

    @app.route(f"{api_prefix}/products/<id>", methods=["PUT"])
    @rate_limits.policy("admin")
    @authenticate
    @require_admin
    @validate(params=ObjectIdParams, body=ProductUpdateBody)
    def update_product(id: str):
        product_id = ObjectId(g.params.id)
        product_document = db.products.find_one({"_id": product_id})
        if not product_document:
            return missing_error("Product")

        payload = g.body
        changes = {
            key: value
            for key, value in payload.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if payload.thumbnail is not None:
            changes["thumbnail"] = payload.thumbnail.as_document()
        if payload.images is not None:
            changes["images"] = [image.as_document() for image in payload.images]

        category_id = changes.get("category")
        if category_id and ObjectId(category_id) != product_document.get("category"):
            if not db.categories.find_one({"_id": ObjectId(category_id)}):
                return bad_request(
                    "Category not found", [field_error("category", "Invalid category ID")]
                )

        updates = prepare_product_update(changes)

        name = updates.get("name")
        if name and name != product_document.get("name"):
            if not updates["slug"]:
                return bad_request(
                    "Product slug could not be derived",
                    [field_error("name", "Name must contain at least one letter or number")],
                )
            if is_taken(db.products, "name", name, exclude_id=product_id):
                return duplicate_error("name")
            if is_taken(db.products, "slug", updates["slug"], exclude_id=product_id):
                return duplicate_error("slug")

        db.products.update_one({"_id": product_id}, {"$set": updates})
        updated_product = db.products.find_one({"_id": product_id})

        return success_response(
            {"product": present_product(updated_product)}, "Product updated successfully"
        )

    @app.route(f"{api_prefix}/products/<id>", methods=["DELETE"])
    @rate_limits.policy("admin")
    @authenticate
    @require_admin
    @validate(params=ObjectIdParams)
    def delete_product(id: str):
        deleted = db.products.find_one_and_delete({"_id": ObjectId(g.params.id)})
        if not deleted:
            return missing_error("Product")

        app.logger.info("Deleted product %s", deleted["_id"])
        return success_response({}, "Product deleted successfully")

    # Users
    @app.route(f"{api_prefix}/users", methods=["GET"])
    @rate_limits.policy("admin")
    @authenticate
    @require_admin
    @validate(query=PaginationQuery)
    def list_users():
        query = g.query
        total = db.users.count_documents({})
        cursor = (
            db.users.find()
            .sort("createdAt", DESCENDING)
            .skip((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        users = [serialize_user(document) for document in cursor]
        return paginated(
            {"users": users}, total, query.page, query.limit, "Users fetched successfully"
        )

    @app.route(f"{api_prefix}/users/<userId>", methods=["GET"])
    @authenticate
    @require_ownership("userId")
    @validate(params=UserIdParams)
    def get_user(userId: str):
        user_document = db.users.find_one({"_id": ObjectId(g.params.userId)})
        if not user_document:
            return missing_error("User", "userId")
        return success_response({"user": serialize_user(user_document)}, "User fetched successfully")

    @app.route(f"{api_prefix}/users/<userId>", methods=["PUT"])
    @authenticate
    @require_ownership("userId")
    @validate(params=UserIdParams, body=UserUpdateBody)
    def update_user(userId: str):
        user_id = ObjectId(g.params.userId)
        user_document = db.users.find_one({"_id": user_id})
        if not user_document:
            return missing_error("User", "userId")

        changes = {
            key: value
            for key, value in g.body.model_dump(exclude_unset=True).items()
            if value is not None
        }
        for field in ("username", "phone"):
            value = changes.get(field)
            if value and value != user_document.get(field):
                if is_taken(db.users, field, value, exclude_id=user_id):
                    return duplicate_error(field)

        db.users.update_one(
            {"_id": user_id}, {"$set": prepare_user_update(changes, bcrypt_rounds)}
        )
        updated_user = db.users.find_one({"_id": user_id})
        return success_response({"user": serialize_user(updated_user)}, "User updated successfully")

    @app.route(f"{api_prefix}/users/<userId>/password", methods=["PUT"])
    @rate_limits.policy("password_reset")
    @authenticate
    @require_ownership("userId")
    @validate(params=UserIdParams, body=PasswordChangeBody)
    def change_password(userId: str):
        user_id = ObjectId(g.params.userId)
        user_document = db.users.find_one({"_id": user_id})
        if not user_document:
            return missing_error("User", "userId")

        payload = g.body
        acting_on_self = g.current_user["_id"] == user_id
        if acting_on_self and not check_password(
            payload.current_password or "", user_document.get("password")
        ):
            return bad_request(
                "Current password is incorrect",
                [field_error("current_password", "Invalid credentials")],
            )

        db.users.update_one(
            {"_id": user_id},
            {"$set": prepare_user_update({"password": payload.new_password}, bcrypt_rounds)},
        )
        app.logger.info("Password changed for user %s by %s", user_id, g.current_user["_id"])
        return success_response({}, "Password updated successfully")

    @app.route(f"{api_prefix}/users/<userId>/status", methods=["PATCH"])
    @rate_limits.policy("admin")
    @authenticate
    @require_admin
    @validate(params=UserIdParams, body=UserStatusBody)
    def update_user_status(userId: str):
        user_id = ObjectId(g.params.userId)
        if user_id == g.current_user["_id"] and not g.body.isActive:
            return bad_request(
                "You cannot deactivate your own account",
                [field_error("isActive", "You cannot deactivate your own account")],
            )

        user_document = db.users.find_one({"_id": user_id})
        if not user_document:
            return missing_error("User", "userId")

        db.users.update_one(
            {"_id": user_id}, {"$set": prepare_user_update({"isActive": g.body.isActive})}
        )
        updated_user = db.users.find_one({"_id": user_id})

        app.logger.info(
            "User %s %s by %s",
            user_id,
            "activated" if g.body.isActive else "deactivated",
            g.current_user["_id"],
        )
        return success_response({"user": serialize_user(updated_user)}, "User status updated")

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
