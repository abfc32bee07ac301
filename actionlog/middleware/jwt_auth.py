"""
JWT auth middleware — parses the bearer token and sets ``g.jwt_user_id``.

Every ``/api/v1/`` route except login and health requires a valid access
token; requests without one are answered 401 here, before the view runs.
"""

import logging

import jwt as pyjwt
from flask import g, request

from actionlog.services.jwt_service import decode_access_token
from actionlog.utils.errors import E, api_error

logger = logging.getLogger(__name__)

JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None

        path = request.path
        if request.method == "OPTIONS" or not path.startswith("/api/v1/"):
            return None
        if path.startswith(JWT_SKIP_PREFIXES):
            return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHENTICATED, "Authentication credentials were not provided")

        token = auth_header[7:].strip()
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHENTICATED, "Token has expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token: %s", exc)
            return api_error(E.UNAUTHENTICATED, "Invalid token")

        try:
            g.jwt_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            return api_error(E.UNAUTHENTICATED, "Invalid token subject")
        return None
