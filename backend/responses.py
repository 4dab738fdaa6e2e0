import math
from datetime import datetime
from typing import Dict, List, Optional

from flask import current_app, jsonify


def utc_timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def field_error(field: str, message: str, code: Optional[str] = None, value=None) -> Dict:
    return {"field": field, "message": message, "code": code, "value": value}


def success_response(data, message: str = "Success", status: int = 200, meta: Optional[Dict] = None):
    body = {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": utc_timestamp(),
    }
    if meta is not None:
        body["meta"] = meta
    return jsonify(body), status


def error_response(
    message: str,
    status: int = 500,
    errors: Optional[List[Dict]] = None,
    meta: Optional[Dict] = None,
):
    body = {
        "success": False,
        "message": message,
        "data": None,
        "errors": errors or [],
        "timestamp": utc_timestamp(),
    }
    if meta is not None:
        body["meta"] = meta
    return jsonify(body), status


def created(data, message: str = "Resource created successfully"):
    return success_response(data, message, 201)


def validation_error(errors: List[Dict], message: str = "Validation failed"):
    return error_response(message, 422, errors)


def bad_request(message: str = "Bad request", errors: Optional[List[Dict]] = None):
    return error_response(message, 400, errors)


def unauthorized(message: str = "Unauthorized access"):
    return error_response(message, 401)


def forbidden(message: str = "Access forbidden"):
    return error_response(message, 403)


def not_found(message: str = "Resource not found"):
    return error_response(message, 404)


def conflict(message: str = "Resource conflict"):
    return error_response(message, 409)


def rate_limited(message: str = "Rate limit exceeded"):
    return error_response(message, 429)


def internal_error(message: str = "Internal server error", exc: Optional[BaseException] = None):
    if exc is not None:
        current_app.logger.error("Internal server error: %s", exc, exc_info=exc)
    return error_response(message, 500)


def build_pagination_meta(total_items: int, current_page: int, items_per_page: int) -> Dict:
    """Page bookkeeping for list endpoints.

    ``totalPages`` is ``ceil(total_items / items_per_page)``; next/prev page
    numbers are ``None`` whenever the matching ``has*`` flag is false.
    """
    total_pages = math.ceil(total_items / items_per_page) if items_per_page else 0
    has_next = current_page < total_pages
    has_prev = current_page > 1

    return {
        "pagination": {
            "currentPage": current_page,
            "totalPages": total_pages,
            "totalItems": total_items,
            "itemsPerPage": items_per_page,
            "hasNextPage": has_next,
            "hasPrevPage": has_prev,
            "nextPage": current_page + 1 if has_next else None,
            "prevPage": current_page - 1 if has_prev else None,
        },
        "total": total_items,
        "page": current_page,
        "limit": items_per_page,
        "hasNext": has_next,
        "hasPrev": has_prev,
    }


def paginated(
    data,
    total_items: int,
    current_page: int,
    items_per_page: int,
    message: str = "Data retrieved successfully",
):
    meta = build_pagination_meta(total_items, current_page, items_per_page)
    return success_response(data, message, 200, meta)
