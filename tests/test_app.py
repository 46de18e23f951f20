"""
Tests for application wiring.

Covers:
  - health probes (ready / live) and a failing backend -> 503
  - security and timing headers on responses
  - unknown API route -> JSON 404
  - export-protocols CLI writes xlsx / csv files
  - JSON and readable log formatters carry protocol context fields
"""

import json
import logging

from openpyxl import load_workbook

from protocol_desk.core.exceptions import PersistenceError
from protocol_desk.middleware.logging_config import JSONFormatter, ReadableFormatter


# ── Health ──────────────────────────────────────────────────────────────────


def test_health_ready(client):
    res = client.get("/api/v1/health/ready")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_health_live_reports_backend(client, protocol):
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    backend = res.get_json()["checks"]["backend"]
    assert backend["kind"] == "memory"
    assert backend["records"] == 1


def test_health_live_backend_failure(client, reset_store, monkeypatch):
    def _boom():
        raise PersistenceError("unreachable", backend="memory")

    monkeypatch.setattr(reset_store.backend, "load_all", _boom)
    res = client.get("/api/v1/health/live")
    assert res.status_code == 503
    assert res.get_json()["status"] == "degraded"


def test_list_returns_503_when_backend_unreadable(client, reset_store, monkeypatch):
    def _boom():
        raise PersistenceError("unreachable", backend="memory")

    monkeypatch.setattr(reset_store.backend, "load_all", _boom)
    res = client.get("/api/v1/protocols")
    assert res.status_code == 503
    assert res.get_json()["code"] == "ERR_PERSISTENCE"


# ── Middleware ──────────────────────────────────────────────────────────────


def test_security_and_timing_headers(client):
    res = client.get("/api/v1/protocols")
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "DENY"
    assert "X-Request-Duration-Ms" in res.headers
    assert res.headers["X-Request-ID"]


def test_request_id_passthrough(client):
    res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"


def test_unknown_route_json_404(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.get_json()["path"] == "/api/v1/nowhere"


def test_json_formatter_includes_context():
    record = logging.LogRecord("protocol_desk", logging.INFO, __file__, 1, "Protocol updated", None, None)
    record.protocol_code = "PT20250131-1234"
    record.actor = "Maria"
    record.action = "EDIT"
    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Protocol updated"
    assert entry["protocol_code"] == "PT20250131-1234"
    assert entry["actor"] == "Maria"
    assert entry["action"] == "EDIT"


def test_readable_formatter_appends_context():
    record = logging.LogRecord("protocol_desk.api", logging.WARNING, __file__, 1, "Slow write", None, None)
    record.actor = "Maria"
    record.duration_ms = 812.4
    line = ReadableFormatter(color=False).format(record)
    assert "WARNING  protocol_desk.api | Slow write" in line
    assert line.endswith("  actor=Maria (812ms)")
    assert "\033[" not in line


# ── CLI ─────────────────────────────────────────────────────────────────────


def test_cli_export_excel(app, client, protocol, tmp_path):
    out = tmp_path / "report.xlsx"
    result = app.test_cli_runner().invoke(args=["export-protocols", "--output", str(out),
                                                "--actor", "Maria"])
    assert result.exit_code == 0, result.output
    assert "Exported 1 protocols" in result.output
    wb = load_workbook(out)
    assert wb["Protocols"].max_row == 2


def test_cli_export_csv_with_status(app, client, protocol, tmp_path):
    out = tmp_path / "report.csv"
    result = app.test_cli_runner().invoke(args=["export-protocols", "-o", str(out),
                                                "--format", "csv", "--status", "SENT"])
    assert result.exit_code == 0, result.output
    assert out.read_text(encoding="utf-8").splitlines()[0].startswith("Protocol Code")
    assert len(out.read_text(encoding="utf-8").splitlines()) == 1
