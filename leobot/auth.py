"""
Password hashing, session tokens and input validation for user accounts.

Sessions are HS256 JWTs carried in an HttpOnly cookie (or a Bearer header for API
clients).
"""

import re
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import bcrypt
from flask import current_app, g, jsonify, request
from jose import JWTError, jwt
from loguru import logger

SALT_ROUNDS = 10
ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(days=7)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=SALT_ROUNDS)).decode()


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed_password.encode())
    except ValueError:
        # Not a bcrypt hash
        return False


def generate_token(
    user: Dict[str, Any], secret: str, lifetime: timedelta = TOKEN_LIFETIME
) -> str:
    """Sign a session token for the given user session."""
    now = datetime.now(timezone.utc)
    claims = {
        "userId": user["userId"],
        "email": user["email"],
        "name": user["name"],
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    """Decode a session token; None when it is malformed, tampered with or expired."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        return None
    if not payload.get("userId"):
        return None
    return {
        "userId": payload["userId"],
        "email": payload.get("email", ""),
        "name": payload.get("name", ""),
    }


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def is_valid_password(password: str) -> bool:
    """At least 8 characters, with upper and lower case letters and a digit."""
    if not password or len(password) < 8:
        return False
    return (
        re.search(r"[A-Z]", password) is not None
        and re.search(r"[a-z]", password) is not None
        and re.search(r"[0-9]", password) is not None
    )


def is_valid_name(name: str) -> bool:
    return bool(name) and len(name.strip()) >= 2


def _request_token() -> Optional[str]:
    settings = current_app.config["SETTINGS"]
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def current_session() -> Optional[Dict[str, Any]]:
    """The verified session of the current request, if any."""
    token = _request_token()
    if not token:
        return None
    return verify_token(token, current_app.config["SETTINGS"].jwt_secret)


def login_required(view):
    """Answer 401 unless the request carries a valid session; exposes it as g.user."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        token = _request_token()
        if not token:
            return jsonify({"error": "Not authenticated"}), 401
        user = verify_token(token, current_app.config["SETTINGS"].jwt_secret)
        if user is None:
            return jsonify({"error": "Invalid token"}), 401
        g.user = user
        return view(*args, **kwargs)

    return wrapper
