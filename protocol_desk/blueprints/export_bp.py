"""
Protocol report export endpoint.

    GET /api/v1/protocols/export
        format: excel | csv (default: excel)
        status: process status filter or "all" (optional)
        q:      search text over code, customer email, subject (optional)

The report covers exactly the filtered list a user sees in the protocol list
view.  Content is generated in-memory; no temp files.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, Response, g, jsonify, request

from protocol_desk.blueprints import register_error_handlers
from protocol_desk.services.export_service import (
    XLSX_MIMETYPE,
    export_filename,
    generate_protocols_csv,
    generate_protocols_excel,
)
from protocol_desk.services.protocol_store import get_store

logger = logging.getLogger(__name__)

export_bp = Blueprint("export", __name__, url_prefix="/api/v1")
register_error_handlers(export_bp)


@export_bp.route("/protocols/export", methods=["GET"])
def export_protocols():
    """Download the filtered protocol list as .xlsx or .csv.

    Returns:
        Binary file download with Content-Disposition, or 400 for an
        unsupported format.
    """
    fmt = request.args.get("format", "excel").lower()
    if fmt not in ("excel", "csv"):
        return jsonify({
            "error": "Unsupported format. Supported values: excel, csv.",
            "code": "INVALID_FORMAT",
        }), 400

    store = get_store()
    store.reload()
    protocols = store.list(status=request.args.get("status"), search_text=request.args.get("q"))
    now = datetime.now(timezone.utc)

    if fmt == "excel":
        content = generate_protocols_excel(protocols, generated_by=g.actor, generated_at=now)
        filename = export_filename("xlsx", now)
        mimetype = XLSX_MIMETYPE
    else:
        content = generate_protocols_csv(protocols)
        filename = export_filename("csv", now)
        mimetype = "text/csv"

    logger.info("Protocol export format=%s rows=%d actor=%s", fmt, len(protocols), g.actor)
    return Response(
        content,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
