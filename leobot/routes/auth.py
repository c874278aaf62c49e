"""Account endpoints: register, login, logout and the current session."""

from flask import Blueprint, current_app, jsonify, request
from loguru import logger

from leobot.app import get_services, json_body
from leobot.auth import (
    current_session,
    generate_token,
    hash_password,
    is_valid_email,
    is_valid_name,
    is_valid_password,
    verify_password,
)
from leobot.database import DuplicateEntryError
from leobot.users import session_for

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

PASSWORD_RULES = (
    "Password must be at least 8 characters long and contain an uppercase letter, "
    "a lowercase letter and a number"
)


def _failure(message: str, status: int):
    return jsonify({"success": False, "message": message}), status


def _set_session_cookie(response, token: str, max_age: int):
    settings = current_app.config["SETTINGS"]
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="Lax",
        path="/",
    )


@bp.route("/register", methods=["POST"])
def register():
    data = json_body()
    email = data.get("email")
    password = data.get("password")
    name = data.get("name")

    if not email or not password or not name:
        return _failure("All fields are required", 400)
    if not all(isinstance(value, str) for value in (email, password, name)):
        return _failure("Email, password and name must be strings", 400)
    if not is_valid_email(email):
        return _failure("Invalid email", 400)
    if not is_valid_password(password):
        return _failure(PASSWORD_RULES, 400)
    if not is_valid_name(name):
        return _failure("Name must be at least 2 characters long", 400)

    users = get_services().users
    if users.find_by_email(email):
        return _failure("Email is already registered", 409)

    try:
        user = users.create(email, hash_password(password), name)
    except DuplicateEntryError:
        return _failure("Email is already registered", 409)

    body = {
        "success": True,
        "message": "User registered successfully",
        "user": session_for(user, include_created=False),
    }
    return jsonify(body), 201


@bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return _failure("Email and password are required", 400)
    if not isinstance(email, str) or not isinstance(password, str):
        return _failure("Email and password must be strings", 400)
    if not is_valid_email(email):
        return _failure("Invalid email", 400)

    users = get_services().users
    user = users.find_by_email(email)
    if not user or not verify_password(password, user["password"]):
        logger.info(f"Failed login for {email.lower()}")
        return _failure("Invalid credentials", 401)

    users.touch_last_login(user["_id"])

    settings = current_app.config["SETTINGS"]
    session = session_for(user)
    token = generate_token(session, settings.jwt_secret)

    response = jsonify(
        {
            "success": True,
            "message": "Login successful",
            "user": session,
            "token": token,
        }
    )
    _set_session_cookie(response, token, settings.session_max_age)
    return response


@bp.route("/logout", methods=["POST"])
def logout():
    response = jsonify({"success": True, "message": "Logout successful"})
    _set_session_cookie(response, "", 0)
    return response


@bp.route("/me", methods=["GET"])
def me():
    settings = current_app.config["SETTINGS"]
    has_token = request.cookies.get(
        settings.session_cookie_name
    ) or request.headers.get("Authorization")
    if not has_token:
        return _failure("Not authenticated", 401)

    user = current_session()
    if user is None:
        return _failure("Invalid token", 401)
    return jsonify({"success": True, "message": "Authenticated", "user": user})
