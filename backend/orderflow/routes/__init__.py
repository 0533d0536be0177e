# Overview: Shared response helpers for the JSON routes.

from decimal import Decimal, InvalidOperation
from functools import wraps

from flask import current_app, jsonify, request

from ..errors import (
    AlreadyClaimed,
    EngineFailure,
    GuardViolation,
    LimitExceeded,
    NotFound,
    NotPermitted,
    StorageError,
)


# Order matters: NotPermitted is a GuardViolation
_STATUS_BY_FAILURE = (
    (NotFound, 404),
    (NotPermitted, 403),
    (AlreadyClaimed, 409),
    (GuardViolation, 409),
    (LimitExceeded, 422),
)


class BadRequest(Exception):
    """Malformed request body. Always a 400."""


def status_for(failure: EngineFailure) -> int:
    for failure_cls, status in _STATUS_BY_FAILURE:
        if isinstance(failure, failure_cls):
            return status
    return 400


def failure_response(failure: EngineFailure):
    return jsonify(failure.to_dict()), status_for(failure)


def respond(result, render, status: int = 200):
    """Render a successful Result with ``render(value)``, or map its failure to HTTP."""
    if not result.ok:
        return failure_response(result.failure)
    return jsonify(render(result.value)), status


def handle_errors(action: str):
    """
    Turn request and infrastructure exceptions into JSON errors.

    Business failures never get here; they come back as Result values.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except BadRequest as e:
                return jsonify({"error": str(e), "kind": "BAD_REQUEST"}), 400
            except StorageError:
                current_app.logger.warning("Storage unavailable while trying to %s", action)
                return jsonify({"error": "Storage unavailable", "kind": "STORAGE_ERROR"}), 503
            except Exception:
                current_app.logger.exception(f"Failed to {action}")
                return jsonify({"error": "Internal server error", "kind": "INTERNAL"}), 500

        return decorated_function

    return decorator


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequest("JSON body must be an object")
    return data


def decimal_field(data: dict, name: str, *, required: bool = True, default=None):
    raw = data.get(name, default)
    if raw is None:
        if required:
            raise BadRequest(f"{name} is required")
        return None
    if isinstance(raw, bool):
        raise BadRequest(f"{name} must be a number")
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise BadRequest(f"{name} must be a number")


def int_field(data: dict, name: str, *, required: bool = True):
    raw = data.get(name)
    if raw is None:
        if required:
            raise BadRequest(f"{name} is required")
        return None
    if isinstance(raw, bool):
        raise BadRequest(f"{name} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise BadRequest(f"{name} must be an integer")


def id_map(raw, name: str) -> dict:
    """{"12": "3.5"} from JSON -> {12: Decimal("3.5")}."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise BadRequest(f"{name} must be an object keyed by line id")
    try:
        return {int(key): Decimal(str(value)) for key, value in raw.items()}
    except (InvalidOperation, TypeError, ValueError):
        raise BadRequest(f"{name} must map line ids to numbers")


def id_list(raw, name: str) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise BadRequest(f"{name} must be a list of line ids")
    try:
        return [int(value) for value in raw]
    except (TypeError, ValueError):
        raise BadRequest(f"{name} must be a list of line ids")
