"""
Protocol Desk
Acting-user identity.

This is identification, not authentication: every mutation is attributed to
a free-text user name that the caller supplies.

Resolution order:
    1. ``X-Actor`` request header
    2. ``actor`` stored in the Flask session via ``POST /api/v1/session``

The resolved name is placed on ``g.actor`` for logging.  An empty result is
passed through to the store, which raises IdentityRequiredError.
"""

import logging

from flask import g, request, session

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor"
SESSION_KEY = "actor"
MAX_ACTOR_LENGTH = 150


def current_actor() -> str | None:
    """Return the acting user's name for this request, or None."""
    actor = (request.headers.get(ACTOR_HEADER) or "").strip()
    if not actor:
        actor = (session.get(SESSION_KEY) or "").strip()
    return actor[:MAX_ACTOR_LENGTH] or None


def set_session_actor(name: str) -> str:
    name = (name or "").strip()[:MAX_ACTOR_LENGTH]
    session[SESSION_KEY] = name
    return name


def clear_session_actor() -> None:
    session.pop(SESSION_KEY, None)


def init_identity(app):
    """Register a before_request hook that exposes the actor on ``g``."""

    @app.before_request
    def _resolve_actor():
        g.actor = current_actor()
