"""
JWT authentication helpers and middleware for the Flask API.
"""

from datetime import datetime, timedelta
from functools import wraps
from typing import Dict, Any, Optional, Tuple

import jwt
from flask import request, jsonify

from medportal.config import SECRET_KEY, TOKEN_EXPIRY_HOURS

TOKEN_COOKIE = "medportal_token"

# In-memory session store (use Redis in production)
# Structure: {token: {"user_id": str, "created_at": datetime, "last_activity": datetime}}
sessions: Dict[str, Dict[str, Any]] = {}


def generate_token(user_id: str) -> str:
    """Generate a JWT token for an authenticated user."""
    payload = {
        "sub": user_id,
        "iat": datetime.utcnow(),
        "exp": datetime.utcnow() + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def extract_token() -> Optional[str]:
    """Read the token from the Authorization header, query string or cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return request.args.get("token") or request.cookies.get(TOKEN_COOKIE)


def lookup_session(token: Optional[str]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Resolve a token to its live session; returns (session_data, error message)."""
    if not token:
        return None, "Authentication token is missing"

    if not verify_token(token):
        return None, "Invalid or expired token"

    session_data = sessions.get(token)
    if session_data is None:
        return None, "Session not found. Please login again."

    session_data["last_activity"] = datetime.utcnow()
    return session_data, None


def current_user_id() -> Optional[str]:
    """User id behind the request's token, or None for an anonymous viewer."""
    session_data, _error = lookup_session(extract_token())
    return session_data["user_id"] if session_data else None


def token_required(f):
    """Decorator that protects endpoints with JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = extract_token()
        session_data, error = lookup_session(token)
        if error:
            return jsonify({"error": error}), 401

        # Attach session data to the request context
        request.session_data = session_data
        request.token = token

        return f(*args, **kwargs)

    return decorated


def cleanup_expired_sessions():
    """Remove sessions that have been inactive beyond TOKEN_EXPIRY_HOURS."""
    now = datetime.utcnow()
    expired = [
        tok for tok, data in sessions.items()
        if (now - data["last_activity"]).total_seconds() > TOKEN_EXPIRY_HOURS * 3600
    ]
    for tok in expired:
        del sessions[tok]
    if expired:
        print(f"[cleanup] Removed {len(expired)} expired sessions")
