"""
Auth blueprint.

Routes:
  POST /api/v1/auth/login   – exchange username (or email) + password for a bearer token
  GET  /api/v1/auth/me      – the current user with delegation-aware flags
"""

import logging

from flask import Blueprint, jsonify

from actionlog.blueprints import current_user, json_body, register_error_handlers
from actionlog.services import jwt_service, user_service
from actionlog.services.user_service import UserServiceError
from actionlog.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    login_name = (data.get("username") or data.get("email") or "").strip()
    password = data.get("password") or ""

    details = {}
    if not login_name:
        details["username"] = "This field is required."
    if not password:
        details["password"] = "This field is required."
    if details:
        return api_error(E.VALIDATION_REQUIRED, "username and password are required", details=details)

    try:
        user = user_service.authenticate_user(login_name, password)
    except UserServiceError as exc:
        code = E.UNAUTHENTICATED if exc.status_code == 401 else E.FORBIDDEN
        return api_error(code, exc.message, status=exc.status_code)

    body = jwt_service.issue_token_response(user)
    body["user"] = user_service.user_to_dict(user)
    return jsonify(body), 200


@auth_bp.route("/me", methods=["GET"])
def me():
    user, err = current_user()
    if err:
        return err
    return jsonify(user_service.user_to_dict(user)), 200
