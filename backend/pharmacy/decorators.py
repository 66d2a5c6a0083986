# Overview: Request decorators and error mapping shared by the API blueprints.

"""
Authentication itself is done upstream. By the time a request reaches this
service the gateway has verified the caller and forwards the identity in
X-Actor-Id / X-Actor-Role. These helpers only read it.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import (
    InsufficientStockError,
    NotFoundError,
    PharmacyError,
    QRScanError,
    ValidationError,
)


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"

# Roles allowed to force an order status outside the transition graph
OVERRIDE_ROLES = {"admin", "manager"}


@dataclass(frozen=True)
class Actor:
    id: str
    role: str | None = None

    @property
    def can_override(self) -> bool:
        return self.role in OVERRIDE_ROLES


def current_actor() -> Actor | None:
    actor_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()
    if not actor_id:
        return None
    role = (request.headers.get(ACTOR_ROLE_HEADER) or "").strip().lower() or None
    return Actor(id=actor_id, role=role)


def require_actor(f):
    """Reject the request with 401 when no authenticated actor was forwarded."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = current_actor()
        if actor is None:
            return jsonify({"error": "Authentication required"}), 401
        g.actor = actor
        return f(*args, **kwargs)
    return decorated_function


def optional_actor(f):
    """Attach the actor when present. Anonymous callers get g.actor = None."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.actor = current_actor()
        return f(*args, **kwargs)
    return decorated_function


def actor_id() -> str | None:
    actor = getattr(g, "actor", None)
    return actor.id if actor else None


def error_response(exc: PharmacyError):
    """
    Map a service error to a JSON response.

    Stock and validation problems are returned with their details.
    Infrastructure problems (encryption, transactions, database targets)
    are logged and answered with a generic 500.
    """
    if isinstance(exc, InsufficientStockError):
        return jsonify({"error": exc.message, "details": exc.details}), 409
    if isinstance(exc, (ValidationError, QRScanError)):
        return jsonify({"error": exc.message, "details": exc.details}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": exc.message}), 404

    current_app.logger.error("Request failed: %s", exc.message, exc_info=exc)
    return jsonify({"error": "Internal server error"}), 500
