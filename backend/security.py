import re
from datetime import timedelta
from functools import wraps
from typing import Dict, Optional

from flask import current_app, g, request
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_current_user,
    verify_jwt_in_request,
)

from documents import ROLE_ADMIN, to_object_id
from responses import bad_request, forbidden, unauthorized

DEFAULT_TOKEN_LIFETIME = timedelta(days=7)
DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}

MISSING_TOKEN_MESSAGE = "Authentication required. Please provide a valid token"
EXPIRED_TOKEN_MESSAGE = "Token has expired. Please login again"
INVALID_TOKEN_MESSAGE = "Invalid token. Please login again"
UNKNOWN_USER_MESSAGE = "User not found. Please login again"
INACTIVE_USER_MESSAGE = "Your account has been deactivated"


def parse_token_lifetime(value: Optional[str]) -> timedelta:
    """Read lifetimes written as ``7d``, ``12h``, ``30m``, ``45s`` or bare seconds."""
    candidate = str(value or "").strip().lower()
    if not candidate:
        return DEFAULT_TOKEN_LIFETIME
    if candidate.isdigit():
        return timedelta(seconds=int(candidate))
    match = re.fullmatch(r"(\d+)\s*([smhdw])", candidate)
    if not match:
        return DEFAULT_TOKEN_LIFETIME
    amount, unit = match.groups()
    return timedelta(**{DURATION_UNITS[unit]: int(amount)})


def init_jwt(app, db) -> JWTManager:
    jwt = JWTManager(app)

    @jwt.user_lookup_loader
    def load_user(_jwt_header, jwt_data):
        user_id = to_object_id(jwt_data.get(app.config["JWT_IDENTITY_CLAIM"]))
        if user_id is None:
            return None
        return db.users.find_one({"_id": user_id})

    @jwt.unauthorized_loader
    def missing_token(reason: str):
        app.logger.warning(
            "Authentication failed: no token provided (%s %s): %s",
            request.method,
            request.path,
            reason,
        )
        return unauthorized(MISSING_TOKEN_MESSAGE)

    @jwt.expired_token_loader
    def expired_token(_jwt_header, jwt_data):
        app.logger.warning(
            "Authentication failed: token expired for %s (%s)",
            jwt_data.get(app.config["JWT_IDENTITY_CLAIM"]),
            request.path,
        )
        return unauthorized(EXPIRED_TOKEN_MESSAGE)

    @jwt.invalid_token_loader
    def invalid_token(reason: str):
        app.logger.warning("Authentication failed: invalid token (%s): %s", request.path, reason)
        return unauthorized(INVALID_TOKEN_MESSAGE)

    @jwt.user_lookup_error_loader
    def unknown_user(_jwt_header, jwt_data):
        app.logger.warning(
            "Authentication failed: user %s not found (%s)",
            jwt_data.get(app.config["JWT_IDENTITY_CLAIM"]),
            request.path,
        )
        return unauthorized(UNKNOWN_USER_MESSAGE)

    return jwt


def issue_token(user_document: Dict) -> str:
    user_id = str(user_document["_id"])
    token = create_access_token(
        identity=user_id,
        additional_claims={"role": user_document.get("role")},
    )
    current_app.logger.info("Token generated for user %s", user_id)
    return token


def authenticate(view):
    """Resolve the bearer token to an active stored user (``g.current_user``)."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        user = get_current_user()
        if not user.get("isActive", True):
            current_app.logger.warning(
                "Authentication failed: user %s is inactive (%s)", user.get("_id"), request.path
            )
            return forbidden(INACTIVE_USER_MESSAGE)

        g.current_user = user
        return view(*args, **kwargs)

    return wrapper


def require_role(*roles: str):
    allowed = {str(role).strip().lower() for role in roles if role}

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = g.get("current_user")
            if not user:
                current_app.logger.warning(
                    "Role check failed: no authenticated user (%s %s)", request.method, request.path
                )
                return unauthorized("Authentication required")

            if user.get("role") not in allowed:
                current_app.logger.warning(
                    "Role check failed: user %s with role %s needs one of %s (%s)",
                    user.get("_id"),
                    user.get("role"),
                    sorted(allowed),
                    request.path,
                )
                return forbidden("You do not have permission to access this resource")

            return view(*args, **kwargs)

        return wrapper

    return decorator


require_admin = require_role(ROLE_ADMIN)


def resolve_owner_id(field: str) -> Optional[str]:
    candidates = [(request.view_args or {}).get(field)]
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        candidates.append(payload.get(field))
    candidates.append(request.args.get(field))

    for candidate in candidates:
        if candidate:
            return str(candidate)
    return None


def require_ownership(field: str = "userId"):
    """Let admins through; everyone else must own the resource named by ``field``."""

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = g.get("current_user")
            if not user:
                return unauthorized("Authentication required")

            if user.get("role") == ROLE_ADMIN:
                return view(*args, **kwargs)

            owner_id = resolve_owner_id(field)
            if not owner_id:
                current_app.logger.warning(
                    "Ownership check failed: no %s in request (%s)", field, request.path
                )
                return bad_request("Resource owner identification is missing")

            if str(user.get("_id")) != owner_id:
                current_app.logger.warning(
                    "Ownership check failed: user %s is not %s (%s)",
                    user.get("_id"),
                    owner_id,
                    request.path,
                )
                return forbidden("You can only access your own resources")

            return view(*args, **kwargs)

        return wrapper

    return decorator
