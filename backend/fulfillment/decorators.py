# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-User-Id"


def with_actor(f):
    """
    Resolve the acting user for the request.

    Authentication is handled upstream; the auth layer forwards the
    authenticated user's id in the X-User-Id header. Sets g.actor_id
    (None when the header is absent, e.g. system calls).

    Returns 400 if the header is present but not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)
        if raw is None or raw.strip() == "":
            g.actor_id = None
            return f(*args, **kwargs)

        raw = raw.strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({
                "error": "VALIDATION_ERROR",
                "message": f"{ACTOR_HEADER} must be a positive integer",
            }), 400

        g.actor_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function


def current_actor_id():
    return getattr(g, "actor_id", None)
