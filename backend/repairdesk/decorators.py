# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .errors import ValidationError
from .permissions import Actor


def require_actor(f):
    """
    Establish the acting user for the request.

    The upstream identity provider authenticates the caller and forwards
    the result in two headers:
    - X-Actor-Id: opaque user id
    - X-Actor-Role: "privileged" or "standard"

    Sets g.actor. Returns 401 when the id header is missing and 400 for an
    unknown role. Permission checks happen in the services.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get("X-Actor-Id") or "").strip()
        if not actor_id:
            return jsonify({"error": "Actor identity required"}), 401

        role = (request.headers.get("X-Actor-Role") or "standard").strip().lower()
        try:
            g.actor = Actor(id=actor_id, role=role)
        except ValidationError as e:
            return jsonify(e.to_dict()), e.status_code

        return f(*args, **kwargs)

    return decorated_function
