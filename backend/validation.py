from functools import wraps
from typing import Dict, List, Optional, Type

from flask import current_app, g, request
from pydantic import BaseModel, ValidationError

from responses import validation_error

SECTIONS = ("body", "query", "params", "headers")


def read_query_args() -> Dict:
    arguments: Dict = {}
    for key in request.args.keys():
        values = request.args.getlist(key)
        arguments[key] = values[0] if len(values) == 1 else values
    return arguments


def read_section(section: str):
    if section == "body":
        payload = request.get_json(silent=True)
        return payload if payload is not None else {}
    if section == "query":
        return read_query_args()
    if section == "params":
        return dict(request.view_args or {})
    return {key.lower(): value for key, value in request.headers.items()}


def lookup_value(source, path):
    current = source
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int) and key < len(current):
            current = current[key]
        else:
            return None
    return current


def format_errors(exc: ValidationError, section: str, source) -> List[Dict]:
    errors: List[Dict] = []
    for issue in exc.errors(include_url=False):
        path = [part for part in issue.get("loc", ())]
        dotted = ".".join(str(part) for part in path)
        if section == "body" and dotted:
            field = dotted
        else:
            field = f"{section}.{dotted}" if dotted else section

        value = lookup_value(source, path) if path else None
        if "password" in dotted:
            value = None
        errors.append(
            {
                "field": field,
                "message": issue.get("msg", "Invalid value"),
                "code": issue.get("type"),
                "value": value if isinstance(value, (str, int, float, bool)) else None,
            }
        )
    return errors


def validate(
    body: Optional[Type[BaseModel]] = None,
    query: Optional[Type[BaseModel]] = None,
    params: Optional[Type[BaseModel]] = None,
    headers: Optional[Type[BaseModel]] = None,
):
    """Validate request sections before the view runs.

    Parsed models are exposed as ``g.body``, ``g.query``, ``g.params`` and
    ``g.headers``. Errors from every section are reported together in a single
    422 response and the view is skipped.
    """
    schemas = dict(zip(SECTIONS, (body, query, params, headers)))

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            errors: List[Dict] = []
            for section, schema in schemas.items():
                if schema is None:
                    continue
                source = read_section(section)
                try:
                    setattr(g, section, schema.model_validate(source))
                except ValidationError as exc:
                    errors.extend(format_errors(exc, section, source))

            if errors:
                current_app.logger.warning(
                    "Validation failed for %s %s: %s",
                    request.method,
                    request.path,
                    [error["field"] for error in errors],
                )
                return validation_error(errors)

            return view(*args, **kwargs)

        return wrapper

    return decorator
