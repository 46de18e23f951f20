"""
Protocol Blueprint.

Endpoints:
    GET    /api/v1/protocols?status=&q=&limit=&offset=
           Reloads from the backend, returns the filtered list (newest first).
    POST   /api/v1/protocols
           Body (JSON or multipart): customer_email, subject, details?, responsible?
           Multipart may carry files under "files".  Returns 201.
    GET    /api/v1/protocols/stats?status=&q=
    GET    /api/v1/protocols/<id>
    PUT    /api/v1/protocols/<id>
           Body: any of customer_email, subject, responsible, details (+ files).
    PATCH  /api/v1/protocols/<id>/status              { "status": "SENT" }
    PATCH  /api/v1/protocols/<id>/approvals/<field>   { "value": "APPROVED" }
           field: budget | customer
    DELETE /api/v1/protocols/<id>?confirm=true
           Permanent; 428 without confirm=true.
    GET    /api/v1/protocols/<id>/history
    GET    /api/v1/protocols/<id>/attachments/<attachment_id>

Layer contract:
    - Blueprint: parse input, resolve the acting user, call the store.
    - All lifecycle rules (validation, identity, dual approval) live in
      services/protocol_store.py.
"""

import io
import logging

from flask import Blueprint, g, jsonify, redirect, request, send_file

from protocol_desk.blueprints import paginate_list, register_error_handlers
from protocol_desk.core.exceptions import NotFoundError
from protocol_desk.models.protocol import AuditAction
from protocol_desk.services.attachment_service import ingest_uploads
from protocol_desk.services.protocol_store import EDITABLE_FIELDS, get_store
from protocol_desk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

protocol_bp = Blueprint("protocols", __name__, url_prefix="/api/v1/protocols")
register_error_handlers(protocol_bp)

_TRUTHY = {"1", "true", "yes", "on"}


# ── Helpers ────────────────────────────────────────────────────────────────────


def _payload() -> dict:
    """Body fields from multipart/form or JSON."""
    if request.files or request.form:
        return request.form.to_dict()
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _uploads() -> list:
    return request.files.getlist("files") if request.files else []


def _serialize(protocol) -> dict:
    return protocol.to_dict(include_content=False)


# ── Routes ─────────────────────────────────────────────────────────────────────


@protocol_bp.route("", methods=["GET"])
def list_protocols():
    """Filtered protocol list.

    Query params:
        status: REQUESTED | SENT | APPROVED_FOR_PRODUCTION | DELIVERED | all
        q:      case-insensitive search over code, customer email, subject
    """
    store = get_store()
    store.reload()
    protocols = store.list(status=request.args.get("status"), search_text=request.args.get("q"))
    page, total = paginate_list(protocols)
    return jsonify({"items": [_serialize(p) for p in page], "total": total}), 200


@protocol_bp.route("", methods=["POST"])
def create_protocol():
    data = _payload()
    actor = g.actor
    attachments = ingest_uploads(_uploads(), actor) if actor else []
    protocol = get_store().create(data, actor, attachments=attachments)
    return jsonify({
        "protocol": _serialize(protocol),
        "message": f"Protocol {protocol.protocol_code} created",
    }), 201


@protocol_bp.route("/stats", methods=["GET"])
def protocol_stats():
    store = get_store()
    store.reload()
    protocols = store.list(status=request.args.get("status"), search_text=request.args.get("q"))
    return jsonify(store.stats(protocols)), 200


@protocol_bp.route("/<protocol_id>", methods=["GET"])
def get_protocol(protocol_id: str):
    store = get_store()
    store.reload()
    return jsonify(_serialize(store.get(protocol_id))), 200


@protocol_bp.route("/<protocol_id>", methods=["PUT"])
def edit_protocol(protocol_id: str):
    data = _payload()
    patch = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    actor = g.actor
    attachments = ingest_uploads(_uploads(), actor) if actor else []
    protocol = get_store().edit(protocol_id, patch, actor, attachments=attachments)
    return jsonify({"protocol": _serialize(protocol), "message": "Protocol updated"}), 200


@protocol_bp.route("/<protocol_id>/status", methods=["PATCH"])
def update_status(protocol_id: str):
    data = _payload()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'status' is required.", status=400)
    protocol = get_store().update_status(protocol_id, data["status"], g.actor)
    return jsonify({"protocol": _serialize(protocol), "message": "Status updated"}), 200


@protocol_bp.route("/<protocol_id>/approvals/<field>", methods=["PATCH"])
def update_approval(protocol_id: str, field: str):
    data = _payload()
    if not data.get("value"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'value' is required.", status=400)
    protocol = get_store().update_approval(protocol_id, field, data["value"], g.actor)
    message = "Approval updated"
    if protocol.audit_log and protocol.audit_log[-1].action == AuditAction.DUAL_APPROVAL:
        message = "Dual approval confirmed - production started"
    return jsonify({"protocol": _serialize(protocol), "message": message}), 200


@protocol_bp.route("/<protocol_id>", methods=["DELETE"])
def delete_protocol(protocol_id: str):
    """Permanently delete a protocol, its attachments and its audit trail.

    Requires ?confirm=true; the action cannot be undone.
    """
    if (request.args.get("confirm") or "").lower() not in _TRUTHY:
        return api_error(
            E.CONFIRMATION_REQUIRED,
            "Deleting a protocol is permanent. Repeat the request with confirm=true.",
        )
    removed = get_store().delete(protocol_id, g.actor)
    return jsonify({
        "id": removed.id,
        "message": f"Protocol {removed.protocol_code} deleted by {g.actor}",
    }), 200


@protocol_bp.route("/<protocol_id>/history", methods=["GET"])
def get_history(protocol_id: str):
    """Full audit trail, oldest first."""
    store = get_store()
    store.reload()
    protocol = store.get(protocol_id)
    history = [e.to_dict() for e in protocol.audit_log]
    return jsonify({"protocol_code": protocol.protocol_code, "history": history,
                    "total": len(history)}), 200


@protocol_bp.route("/<protocol_id>/attachments/<attachment_id>", methods=["GET"])
def download_attachment(protocol_id: str, attachment_id: str):
    store = get_store()
    store.reload()
    protocol = store.get(protocol_id)
    attachment = next((a for a in protocol.attachments if a.id == attachment_id), None)
    if attachment is None:
        raise NotFoundError(resource="Attachment", resource_id=attachment_id)

    if attachment.content_b64 is not None:
        return send_file(
            io.BytesIO(attachment.content),
            mimetype=attachment.mime_type,
            as_attachment=True,
            download_name=attachment.filename,
        )
    if attachment.url:
        return redirect(attachment.url)
    return api_error(E.NOT_FOUND, "Attachment has no stored content")
