"""
Tests for the protocol report export (Excel / CSV).

Covers:
  - generate_protocols_excel returns .xlsx bytes with Protocols / Audit / Statistics sheets
  - Protocols sheet: 16 headers, one row per protocol, status label, attachment count
  - Audit sheet omitted when there are no audit entries
  - Statistics sheet totals and generated-by line
  - generate_protocols_csv header row and flattened details
  - user text that looks like a formula is quoted in both formats
  - export_filename format
  - Export endpoint: xlsx / csv downloads, filters applied, 400 for format=pdf
"""

import csv
import io
from datetime import datetime, timezone

from openpyxl import load_workbook

from protocol_desk.models.protocol import Attachment, Protocol
from protocol_desk.services.export_service import (
    PROTOCOL_HEADERS,
    XLSX_MIMETYPE,
    export_filename,
    generate_protocols_csv,
    generate_protocols_excel,
)
from protocol_desk.services.persistence import MemoryBackend
from protocol_desk.services.protocol_store import ProtocolStore


# ── Helpers ─────────────────────────────────────────────────────────────────


NOW = datetime(2025, 3, 4, 15, 30, tzinfo=timezone.utc)


def _make_protocols():
    store = ProtocolStore(MemoryBackend(), clock=lambda: NOW)
    first = store.create({"customer_email": "a@acme.test", "subject": "Pallets",
                          "details": "line one\nline two"}, "Maria")
    store.create({"customer_email": "b@acme.test", "subject": "Crates"}, "Joao",
                 attachments=[Attachment(id="a1", filename="q.pdf", size=1, content_b64="eA==")])
    store.update_approval(first.id, "budget", "APPROVED", "Ana")
    store.update_approval(first.id, "customer", "CONFIRMED", "Ana")
    return store.list()


def _sheet_rows(ws):
    return [list(r) for r in ws.iter_rows(values_only=True)]


# ── Tests: generate_protocols_excel ─────────────────────────────────────────


def test_generate_excel_returns_bytes():
    result = generate_protocols_excel(_make_protocols())
    assert isinstance(result, bytes)
    assert len(result) > 0


def test_excel_sheets_and_protocol_rows():
    protocols = _make_protocols()
    wb = load_workbook(io.BytesIO(generate_protocols_excel(protocols, generated_by="Maria",
                                                           generated_at=NOW)))

    assert wb.sheetnames == ["Protocols", "Audit", "Statistics"]
    rows = _sheet_rows(wb["Protocols"])
    assert rows[0] == PROTOCOL_HEADERS
    assert len(rows) == 3

    crates, pallets = rows[1], rows[2]
    assert crates[3] == "Crates"
    assert crates[4] == "1. Quote requested"
    assert crates[-1] == 1
    assert pallets[4] == "3. Quote approved - start production"
    assert pallets[7] == "APPROVED"
    assert pallets[8] == "Ana"


def test_excel_audit_rows():
    wb = load_workbook(io.BytesIO(generate_protocols_excel(_make_protocols())))
    rows = _sheet_rows(wb["Audit"])
    # header + 1 (Crates) + 4 (Pallets: create, budget, customer, dual)
    assert len(rows) == 6
    assert rows[-1][3] == "DUAL_APPROVAL"


def test_excel_without_audit_entries_omits_sheet():
    p = Protocol(id="x", protocol_code="PT20250304-1234", customer_email="a@acme.test",
                 subject="s", created_by="Maria", created_at=NOW, updated_at=NOW)
    wb = load_workbook(io.BytesIO(generate_protocols_excel([p])))
    assert wb.sheetnames == ["Protocols", "Statistics"]


def test_excel_statistics_sheet():
    wb = load_workbook(io.BytesIO(generate_protocols_excel(_make_protocols(), generated_by="Maria",
                                                           generated_at=NOW)))
    stats = {r[0]: r[1] for r in _sheet_rows(wb["Statistics"]) if r[0]}
    assert stats["Total Protocols"] == 2
    assert stats["Quotes Requested"] == 1
    assert stats["Approved for Production"] == 1
    assert stats["Pending Budget Approvals"] == 1
    assert stats["Report generated at:"] == "2025-03-04 15:30:00"
    assert stats["Generated by:"] == "Maria"


def test_excel_empty_list():
    wb = load_workbook(io.BytesIO(generate_protocols_excel([])))
    assert _sheet_rows(wb["Protocols"]) == [PROTOCOL_HEADERS]


def test_formula_like_text_is_quoted():
    store = ProtocolStore(MemoryBackend(), clock=lambda: NOW)
    store.create({"customer_email": "@attacker.test", "subject": '=HYPERLINK("http://x","y")',
                  "details": "+1 555 0100"}, "-Maria")
    protocols = store.list()

    wb = load_workbook(io.BytesIO(generate_protocols_excel(protocols)))
    [row] = _sheet_rows(wb["Protocols"])[1:]
    assert row[2] == "'@attacker.test"
    assert row[3] == "'=HYPERLINK(\"http://x\",\"y\")"
    assert row[6] == "'-Maria"
    assert row[14] == "'+1 555 0100"
    assert _sheet_rows(wb["Audit"])[1][2] == "'-Maria"

    _, csv_row = list(csv.reader(io.StringIO(generate_protocols_csv(protocols))))
    assert csv_row[3] == "'=HYPERLINK(\"http://x\",\"y\")"
    assert csv_row[14] == "'+1 555 0100"


# ── Tests: CSV / filename ───────────────────────────────────────────────────


def test_generate_csv_flattens_details():
    content = generate_protocols_csv(_make_protocols())
    lines = content.splitlines()
    assert lines[0].startswith("Protocol Code,Entry Date,Customer Email")
    assert len(lines) == 3
    assert "line one line two" in content


def test_export_filename_format():
    assert export_filename("xlsx", NOW) == f"PROTOCOLS_2025-03-04_{int(NOW.timestamp() * 1000)}.xlsx"


# ── Tests: export endpoint ──────────────────────────────────────────────────


def test_export_endpoint_xlsx(client, actor_headers, protocol):
    res = client.get("/api/v1/protocols/export?format=excel", headers=actor_headers)
    assert res.status_code == 200
    assert res.mimetype == XLSX_MIMETYPE
    assert res.headers["Content-Disposition"].startswith("attachment; filename=PROTOCOLS_")
    assert res.headers["Content-Disposition"].endswith(".xlsx")

    wb = load_workbook(io.BytesIO(res.data))
    assert len(_sheet_rows(wb["Protocols"])) == 2
    stats = {r[0]: r[1] for r in _sheet_rows(wb["Statistics"]) if r[0]}
    assert stats["Generated by:"] == "Maria"


def test_export_endpoint_csv_applies_filters(client, actor_headers, protocol):
    client.post("/api/v1/protocols", json={"customer_email": "z@other.test", "subject": "Other"},
                headers=actor_headers)
    res = client.get("/api/v1/protocols/export?format=csv&q=other")
    assert res.status_code == 200
    assert res.mimetype == "text/csv"
    lines = res.data.decode("utf-8").splitlines()
    assert len(lines) == 2
    assert "z@other.test" in lines[1]


def test_export_endpoint_rejects_pdf(client):
    res = client.get("/api/v1/protocols/export?format=pdf")
    assert res.status_code == 400
    assert res.get_json()["code"] == "INVALID_FORMAT"
