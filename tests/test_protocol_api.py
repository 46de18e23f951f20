"""
Tests for the protocol HTTP API.

Covers:
  - POST creates (JSON and multipart with attachments); 401 without actor, 422 without subject
  - GET list: newest first, status filter, search, invalid status, pagination
  - GET single / history / stats; 404 for unknown ids
  - PUT edit, PATCH status, PATCH approvals including the dual-approval message
  - DELETE needs confirm=true (428), then removes the record
  - Attachment download; oversize uploads are skipped, the protocol is still saved
  - Error payload shape: {"error", "code"}
"""

import io

import pytest


# ── Helpers ─────────────────────────────────────────────────────────────────


def _create(client, headers, **overrides):
    body = {"customer_email": "buyer@acme.test", "subject": "Steel brackets x200"}
    body.update(overrides)
    res = client.post("/api/v1/protocols", json=body, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["protocol"]


# ── Tests: create ───────────────────────────────────────────────────────────


def test_create_returns_201_with_message(client, actor_headers):
    res = client.post(
        "/api/v1/protocols",
        json={"customer_email": "buyer@acme.test", "subject": "Pallets", "details": "Urgent"},
        headers=actor_headers,
    )
    assert res.status_code == 201
    data = res.get_json()
    p = data["protocol"]
    assert data["message"] == f"Protocol {p['protocol_code']} created"
    assert p["status"] == "REQUESTED"
    assert p["responsible"] == "Unassigned"
    assert p["created_by"] == "Maria"
    assert len(p["audit_log"]) == 1


def test_create_without_actor_401(client):
    res = client.post("/api/v1/protocols", json={"customer_email": "a@b.test", "subject": "x"})
    assert res.status_code == 401
    assert res.get_json()["code"] == "ERR_IDENTITY_REQUIRED"


def test_create_missing_subject_422(client, actor_headers):
    res = client.post("/api/v1/protocols", json={"customer_email": "a@b.test"}, headers=actor_headers)
    assert res.status_code == 422
    body = res.get_json()
    assert body["code"] == "ERR_VALIDATION_REQUIRED"
    assert body["details"] == {"subject": "required"}
    assert client.get("/api/v1/protocols").get_json()["total"] == 0


def test_create_multipart_with_attachments(client, actor_headers):
    res = client.post(
        "/api/v1/protocols",
        data={
            "customer_email": "buyer@acme.test",
            "subject": "Drawings attached",
            "files": [(io.BytesIO(b"%PDF-1.4 quote"), "quote.pdf"), (io.BytesIO(b"a,b\n1,2"), "bom.csv")],
        },
        content_type="multipart/form-data",
        headers=actor_headers,
    )
    assert res.status_code == 201
    p = res.get_json()["protocol"]
    assert [a["filename"] for a in p["attachments"]] == ["quote.pdf", "bom.csv"]
    assert p["attachments"][0]["size"] == len(b"%PDF-1.4 quote")
    assert p["attachments"][0]["uploaded_by"] == "Maria"
    assert "content_b64" not in p["attachments"][0]


def test_oversize_attachment_skipped(client, actor_headers):
    """Testing config caps attachments at 1 KiB; the protocol is still created."""
    res = client.post(
        "/api/v1/protocols",
        data={
            "customer_email": "buyer@acme.test",
            "subject": "Big file",
            "files": [(io.BytesIO(b"x" * 4096), "big.bin"), (io.BytesIO(b"ok"), "small.txt")],
        },
        content_type="multipart/form-data",
        headers=actor_headers,
    )
    assert res.status_code == 201
    assert [a["filename"] for a in res.get_json()["protocol"]["attachments"]] == ["small.txt"]


def test_download_attachment(client, actor_headers):
    res = client.post(
        "/api/v1/protocols",
        data={"customer_email": "b@acme.test", "subject": "s",
              "files": [(io.BytesIO(b"hello quote"), "quote.txt")]},
        content_type="multipart/form-data",
        headers=actor_headers,
    )
    p = res.get_json()["protocol"]
    att_id = p["attachments"][0]["id"]

    res = client.get(f"/api/v1/protocols/{p['id']}/attachments/{att_id}")
    assert res.status_code == 200
    assert res.data == b"hello quote"
    assert "quote.txt" in res.headers["Content-Disposition"]
    assert res.headers["Cache-Control"] == "no-store"

    res = client.get(f"/api/v1/protocols/{p['id']}/attachments/nope")
    assert res.status_code == 404


# ── Tests: list / get ───────────────────────────────────────────────────────


def test_list_newest_first_and_filters(client, actor_headers):
    a = _create(client, actor_headers, customer_email="x@alpha.test")
    b = _create(client, actor_headers, subject="Crates")
    client.patch(f"/api/v1/protocols/{b['id']}/status", json={"status": "SENT"}, headers=actor_headers)

    res = client.get("/api/v1/protocols")
    assert [p["id"] for p in res.get_json()["items"]] == [b["id"], a["id"]]

    res = client.get("/api/v1/protocols?status=SENT")
    assert [p["id"] for p in res.get_json()["items"]] == [b["id"]]

    res = client.get("/api/v1/protocols?q=ALPHA")
    assert [p["id"] for p in res.get_json()["items"]] == [a["id"]]

    res = client.get("/api/v1/protocols?status=all&q=crates")
    assert res.get_json()["total"] == 1


def test_list_invalid_status_422(client):
    res = client.get("/api/v1/protocols?status=ARCHIVED")
    assert res.status_code == 422
    assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


def test_list_pagination(client, actor_headers):
    for i in range(3):
        _create(client, actor_headers, subject=f"Order {i}")
    res = client.get("/api/v1/protocols?limit=2&offset=1")
    data = res.get_json()
    assert data["total"] == 3
    assert [p["subject"] for p in data["items"]] == ["Order 1", "Order 0"]


def test_get_unknown_404(client):
    res = client.get("/api/v1/protocols/does-not-exist")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_stats(client, actor_headers, protocol):
    _create(client, actor_headers)
    client.patch(f"/api/v1/protocols/{protocol['id']}/approvals/budget",
                 json={"value": "APPROVED"}, headers=actor_headers)

    stats = client.get("/api/v1/protocols/stats").get_json()
    assert stats["total"] == 2
    assert stats["by_status"]["REQUESTED"] == 2
    assert stats["pending_budget_approvals"] == 1


# ── Tests: mutations ────────────────────────────────────────────────────────


def test_edit_protocol(client, actor_headers, protocol):
    res = client.put(
        f"/api/v1/protocols/{protocol['id']}",
        json={"responsible": "Joao", "status": "DELIVERED"},
        headers={"X-Actor": "Ana"},
    )
    assert res.status_code == 200
    p = res.get_json()["protocol"]
    assert p["responsible"] == "Joao"
    assert p["status"] == "REQUESTED"
    assert p["audit_log"][-1]["details"] == "Fields edited: Responsible: Unassigned -> Joao"
    assert p["audit_log"][-1]["user"] == "Ana"


def test_edit_blank_subject_422(client, actor_headers, protocol):
    res = client.put(f"/api/v1/protocols/{protocol['id']}", json={"subject": ""}, headers=actor_headers)
    assert res.status_code == 422


def test_update_status(client, actor_headers, protocol):
    res = client.patch(f"/api/v1/protocols/{protocol['id']}/status",
                       json={"status": "SENT"}, headers=actor_headers)
    assert res.status_code == 200
    assert res.get_json()["protocol"]["status"] == "SENT"


def test_update_status_missing_field_400(client, actor_headers, protocol):
    res = client.patch(f"/api/v1/protocols/{protocol['id']}/status", json={}, headers=actor_headers)
    assert res.status_code == 400


def test_update_status_without_actor_401(client, protocol):
    res = client.patch(f"/api/v1/protocols/{protocol['id']}/status", json={"status": "SENT"})
    assert res.status_code == 401


def test_dual_approval_flow(client, actor_headers, protocol):
    pid = protocol["id"]
    res = client.patch(f"/api/v1/protocols/{pid}/approvals/budget",
                       json={"value": "APPROVED"}, headers=actor_headers)
    assert res.get_json()["message"] == "Approval updated"

    res = client.patch(f"/api/v1/protocols/{pid}/approvals/customer",
                       json={"value": "CONFIRMED"}, headers=actor_headers)
    data = res.get_json()
    assert res.status_code == 200
    assert data["message"] == "Dual approval confirmed - production started"
    assert data["protocol"]["status"] == "APPROVED_FOR_PRODUCTION"

    history = client.get(f"/api/v1/protocols/{pid}/history").get_json()
    assert history["total"] == 4
    assert [h["action"] for h in history["history"]] == [
        "CREATE", "BUDGET_APPROVAL", "CUSTOMER_CONFIRMATION", "DUAL_APPROVAL",
    ]


@pytest.mark.parametrize("field, value", [("legal", "APPROVED"), ("budget", "MAYBE")])
def test_invalid_approval_422(client, actor_headers, protocol, field, value):
    res = client.patch(f"/api/v1/protocols/{protocol['id']}/approvals/{field}",
                       json={"value": value}, headers=actor_headers)
    assert res.status_code == 422


def test_delete_requires_confirmation(client, actor_headers, protocol):
    res = client.delete(f"/api/v1/protocols/{protocol['id']}", headers=actor_headers)
    assert res.status_code == 428
    assert res.get_json()["code"] == "ERR_CONFIRMATION_REQUIRED"
    assert client.get(f"/api/v1/protocols/{protocol['id']}").status_code == 200


def test_delete_confirmed(client, actor_headers, protocol):
    res = client.delete(f"/api/v1/protocols/{protocol['id']}?confirm=true", headers=actor_headers)
    assert res.status_code == 200
    assert res.get_json()["id"] == protocol["id"]
    assert client.get(f"/api/v1/protocols/{protocol['id']}").status_code == 404
    assert client.get(f"/api/v1/protocols/{protocol['id']}/history").status_code == 404


def test_delete_without_actor_401(client, protocol):
    res = client.delete(f"/api/v1/protocols/{protocol['id']}?confirm=true")
    assert res.status_code == 401
