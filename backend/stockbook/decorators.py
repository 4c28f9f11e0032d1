# Overview: Request decorators for API routes.

import hmac
from functools import wraps

from flask import current_app, jsonify, request


def require_access_key(f):
    """
    Require the static shared secret.

    Clients send ``Authorization: Bearer <ACCESS_KEY>``. An empty ACCESS_KEY
    disables the check (local development only).

    SECURITY: Returns 401 if:
    - No Authorization header
    - The bearer token does not match ACCESS_KEY
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("ACCESS_KEY") or ""
        if not expected:
            return f(*args, **kwargs)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            return jsonify({"error": "Invalid access key"}), 401

        return f(*args, **kwargs)

    return decorated_function
