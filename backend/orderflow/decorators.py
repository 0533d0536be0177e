# Overview: Request decorators resolving the acting identity for API routes.

from functools import wraps
from flask import request, jsonify, g

from .flags import Role
from .identity import Actor


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"
ACTOR_ADMIN_HEADER = "X-Actor-Admin"


def _resolve_actor():
    raw_id = request.headers.get(ACTOR_ID_HEADER)
    raw_role = request.headers.get(ACTOR_ROLE_HEADER)
    if not raw_id or not raw_role:
        return None
    try:
        actor_id = int(raw_id)
        role = Role(raw_role.strip().upper())
    except ValueError:
        return None
    is_admin = request.headers.get(ACTOR_ADMIN_HEADER, "").strip().lower() in ("1", "true", "yes")
    return Actor(actor_id=actor_id, role=role, is_admin=is_admin)


def require_actor(f):
    """
    Require a resolved actor and store it on g.actor.

    The identity collaborator (an auth gateway in front of this service)
    authenticates the caller and forwards the result as headers:
    - X-Actor-Id: integer actor id
    - X-Actor-Role: one of Role
    - X-Actor-Admin: "true" when the actor may perform admin-only transitions

    Returns 401 if the headers are missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = _resolve_actor()
        if actor is None:
            return jsonify({"error": "Actor identity required", "kind": "UNAUTHENTICATED"}), 401
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require an actor that may perform admin-only transitions. Use after require_actor."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = getattr(g, "actor", None)
        if actor is None:
            return jsonify({"error": "Actor identity required", "kind": "UNAUTHENTICATED"}), 401
        if not actor.acts_as_admin:
            return jsonify({"error": "Admin required", "kind": "NOT_PERMITTED"}), 403
        return f(*args, **kwargs)

    return decorated_function
