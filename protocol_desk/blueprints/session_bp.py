"""
Session identity endpoints.

    GET    /api/v1/session   -> {"actor": "<name>" | null}
    POST   /api/v1/session   body {"actor": "<name>"}  -> 200
    DELETE /api/v1/session   -> 204

Establishes the acting user once per browser session so later mutations do
not need an X-Actor header.
"""

import logging

from flask import Blueprint, jsonify, request

from protocol_desk.identity import clear_session_actor, current_actor, set_session_actor
from protocol_desk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

session_bp = Blueprint("session", __name__, url_prefix="/api/v1/session")


@session_bp.route("", methods=["GET"])
def get_session():
    return jsonify({"actor": current_actor()}), 200


@session_bp.route("", methods=["POST"])
def set_session():
    data = request.get_json(silent=True) or {}
    name = (data.get("actor") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "Enter your name", status=400,
                         details={"actor": "required"})
    name = set_session_actor(name)
    logger.info("Session actor set", extra={"actor": name})
    return jsonify({"actor": name, "message": f"Welcome, {name}!"}), 200


@session_bp.route("", methods=["DELETE"])
def clear_session():
    clear_session_actor()
    return "", 204
