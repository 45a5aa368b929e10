"""Decorators for authenticated endpoints."""

from functools import wraps

from flask import jsonify, session


def login_required(f):
    """Reject the request with a JSON 401 if the user is not logged in.

    Organizer and admin checks happen in the services, against the
    tournament being changed.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if "user_id" not in session:
            return jsonify({"error": "Authentication required."}), 401
        return f(*args, **kwargs)

    return decorated_function
