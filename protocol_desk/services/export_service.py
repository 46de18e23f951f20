"""
Protocol report export: Excel (.xlsx) and CSV.

The exporter is read-only: it receives the already-filtered protocol
sequence (ProtocolStore.list output) and never touches the backend.
Content is returned in-memory; no temp files are written.

Workbook layout:
    1. Protocols:  one row per protocol, 16 columns, autofilter on header.
    2. Audit:      one row per audit entry; omitted when there are none.
    3. Statistics: totals per status, pending approvals, generated at/by.
"""

import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from protocol_desk.models.protocol import ProcessStatus, Protocol
from protocol_desk.services.protocol_store import ProtocolStore

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="1D4ED8", end_color="1D4ED8", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
STATUS_FILLS = {
    ProcessStatus.REQUESTED: PatternFill(start_color="FEF3C7", end_color="FEF3C7", fill_type="solid"),
    ProcessStatus.SENT: PatternFill(start_color="DBEAFE", end_color="DBEAFE", fill_type="solid"),
    ProcessStatus.APPROVED_FOR_PRODUCTION: PatternFill(start_color="D1FAE5", end_color="D1FAE5", fill_type="solid"),
    ProcessStatus.DELIVERED: PatternFill(start_color="F1F5F9", end_color="F1F5F9", fill_type="solid"),
}

PROTOCOL_HEADERS = [
    "Protocol Code",
    "Entry Date",
    "Customer Email",
    "Subject",
    "Process Status",
    "Responsible",
    "Created By",
    "Budget Approval",
    "Approved By",
    "Approval Date",
    "Customer Confirmation",
    "Confirmed By",
    "Confirmation Date",
    "Last Update",
    "Details",
    "Attachments",
]
PROTOCOL_WIDTHS = [18, 20, 30, 40, 35, 20, 20, 15, 20, 20, 15, 20, 20, 20, 60, 12]

AUDIT_HEADERS = ["Protocol Code", "Date/Time", "User", "Action", "Details"]
AUDIT_WIDTHS = [18, 20, 25, 25, 80]

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Leading characters that spreadsheet apps read as the start of a formula.
FORMULA_PREFIXES = ("=", "+", "-", "@")


def _fmt_ts(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def _safe_text(value: str | None) -> str:
    """Quote user text that would otherwise be evaluated as a formula."""
    value = value or ""
    return f"'{value}" if value.startswith(FORMULA_PREFIXES) else value


def _protocol_row(p: Protocol) -> list:
    return [
        p.protocol_code,
        _fmt_ts(p.created_at),
        _safe_text(p.customer_email),
        _safe_text(p.subject),
        p.status.label,
        _safe_text(p.responsible),
        _safe_text(p.created_by),
        p.budget_approval.value,
        _safe_text(p.budget_approval_by),
        _fmt_ts(p.budget_approval_at),
        p.customer_confirmation.value,
        _safe_text(p.customer_confirmation_by),
        _fmt_ts(p.customer_confirmation_at),
        _fmt_ts(p.updated_at),
        _safe_text(p.details),
        len(p.attachments),
    ]


def _apply_header_style(ws, row: int, col_count: int) -> None:
    """Apply header styling to an Excel row (1-indexed)."""
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _set_widths(ws, widths: list[int]) -> None:
    for col, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(col)].width = width


def export_filename(extension: str, now: datetime | None = None) -> str:
    """PROTOCOLS_<YYYY-MM-DD>_<epoch ms>.<ext>"""
    now = now or datetime.now(timezone.utc)
    return f"PROTOCOLS_{now:%Y-%m-%d}_{int(now.timestamp() * 1000)}.{extension}"


def generate_protocols_excel(
    protocols: list[Protocol],
    generated_by: str | None = None,
    generated_at: datetime | None = None,
) -> bytes:
    """Build the protocol report workbook.

    Args:
        protocols: The filtered protocol sequence, in display order.
        generated_by: Acting user shown on the Statistics sheet.
        generated_at: Report timestamp; defaults to now (UTC).

    Returns:
        bytes: Raw .xlsx file content.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    wb = Workbook()

    # ── Tab 1: Protocols ──────────────────────────────────────────────────────
    ws1 = wb.active
    ws1.title = "Protocols"
    ws1.append(PROTOCOL_HEADERS)
    _apply_header_style(ws1, 1, len(PROTOCOL_HEADERS))
    status_col = PROTOCOL_HEADERS.index("Process Status") + 1

    for row_i, p in enumerate(protocols, start=2):
        ws1.append(_protocol_row(p))
        ws1.cell(row=row_i, column=status_col).fill = STATUS_FILLS[p.status]

    _set_widths(ws1, PROTOCOL_WIDTHS)
    ws1.auto_filter.ref = f"A1:{get_column_letter(len(PROTOCOL_HEADERS))}1"
    ws1.freeze_panes = "A2"

    # ── Tab 2: Audit ──────────────────────────────────────────────────────────
    audit_rows = [
        [p.protocol_code, _fmt_ts(e.timestamp), _safe_text(e.user), e.action.value, _safe_text(e.details)]
        for p in protocols
        for e in p.audit_log
    ]
    if audit_rows:
        ws2 = wb.create_sheet("Audit")
        ws2.append(AUDIT_HEADERS)
        _apply_header_style(ws2, 1, len(AUDIT_HEADERS))
        for row in audit_rows:
            ws2.append(row)
        _set_widths(ws2, AUDIT_WIDTHS)
        ws2.auto_filter.ref = f"A1:{get_column_letter(len(AUDIT_HEADERS))}1"

    # ── Tab 3: Statistics ─────────────────────────────────────────────────────
    stats = ProtocolStore.stats(protocols)
    by_status = stats["by_status"]
    ws3 = wb.create_sheet("Statistics")
    stat_rows = [
        ("Statistic", "Value"),
        ("Total Protocols", stats["total"]),
        ("Quotes Requested", by_status[ProcessStatus.REQUESTED.value]),
        ("Quotes Sent", by_status[ProcessStatus.SENT.value]),
        ("Approved for Production", by_status[ProcessStatus.APPROVED_FOR_PRODUCTION.value]),
        ("Delivered", by_status[ProcessStatus.DELIVERED.value]),
        ("Pending Budget Approvals", stats["pending_budget_approvals"]),
        ("Pending Customer Confirmations", stats["pending_customer_confirmations"]),
        ("", ""),
        ("Report generated at:", _fmt_ts(generated_at)),
        ("Generated by:", _safe_text(generated_by)),
    ]
    for row in stat_rows:
        ws3.append(row)
    _apply_header_style(ws3, 1, 2)
    _set_widths(ws3, [35, 20])

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)

    logger.info("Protocol workbook generated: %d protocols, %d audit rows",
                len(protocols), len(audit_rows))
    return buf.getvalue()


def generate_protocols_csv(protocols: list[Protocol]) -> str:
    """CSV with the Protocols sheet columns; newlines in details are flattened."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(PROTOCOL_HEADERS)
    for p in protocols:
        row = _protocol_row(p)
        row[PROTOCOL_HEADERS.index("Details")] = _safe_text((p.details or "").replace("\n", " "))
        writer.writerow(row)
    return buf.getvalue()
