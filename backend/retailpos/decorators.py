# Overview: Request and role decorators for API routes.

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, jsonify, request


ROLE_CASHIER = "cashier"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Identity:
    """Caller identity handed over by the external auth collaborator."""
    user_id: int
    role: str = ROLE_CASHIER
    branch_id: int | None = None


def _resolve_identity(token: str) -> Identity | None:
    """
    Look the bearer token up.

    IDENTITY_RESOLVER (callable(token) -> dict | None) wins when configured;
    otherwise the static API_TOKENS mapping is used.
    """
    resolver = current_app.config.get("IDENTITY_RESOLVER")
    if resolver is not None:
        info = resolver(token)
    else:
        info = (current_app.config.get("API_TOKENS") or {}).get(token)
    if not info or info.get("user_id") is None:
        return None
    return Identity(
        user_id=int(info["user_id"]),
        role=info.get("role", ROLE_CASHIER),
        branch_id=info.get("branch_id"),
    )


def require_auth(f):
    """
    Require a bearer token and establish the caller.

    Sets g.current_user to an Identity. Returns 401 if the header is
    missing or the token is unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"success": False, "error": "Authentication required", "code": "UNAUTHORIZED"}), 401

        token = auth_header.split(" ", 1)[1]
        identity = _resolve_identity(token)

        if identity is None:
            return jsonify({"success": False, "error": "Invalid or expired token", "code": "UNAUTHORIZED"}), 401

        g.current_user = identity
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of the given roles. Admins always pass."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            identity = getattr(g, "current_user", None)
            if identity is None:
                return jsonify({"success": False, "error": "Authentication required", "code": "UNAUTHORIZED"}), 401

            if identity.role != ROLE_ADMIN and identity.role not in roles:
                current_app.logger.warning(
                    "User %s (%s) denied %s %s", identity.user_id, identity.role, request.method, request.path
                )
                return jsonify({
                    "success": False,
                    "error": "Permission denied",
                    "code": "FORBIDDEN",
                    "details": {"required_roles": list(roles)},
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
