"""
JWT Auth Middleware — resolves the acting user from ``Authorization: Bearer``.

Tokens are issued elsewhere; this service only verifies them (HS256, shared
secret ``JWT_SECRET_KEY``, falling back to ``SECRET_KEY``). The token's
``sub`` claim is the user id and lands in ``g.actor_id``.

Every ``/api/v1/`` path except the skip list requires a valid token; a
missing, expired or malformed token is answered with 401 before the view runs.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from stageflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry; returns the payload.

    Raises pyjwt.InvalidTokenError (or a subclass) on failure.
    """
    payload = pyjwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type", "access") != "access":
        raise pyjwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    return payload


def actor_id_from_token(token: str) -> int:
    payload = decode_access_token(token)
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise pyjwt.InvalidTokenError("Token has no usable 'sub' claim") from exc


def current_actor_id():
    """Actor id resolved for this request (None outside the API)."""
    return getattr(g, "actor_id", None)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor_id = None

        path = request.path
        if not path.startswith("/api/v1/") or request.method == "OPTIONS":
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
        else:
            # EventSource cannot set headers; the SSE stream takes ?access_token=
            token = request.args.get("access_token") if path.endswith("/events") else None
        if not token:
            return api_error(E.UNAUTHORIZED, "Authentication required")

        try:
            g.actor_id = actor_id_from_token(token)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHORIZED, "Token expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            return api_error(E.UNAUTHORIZED, "Invalid token")
        return None
