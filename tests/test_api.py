from __future__ import annotations

from fastapi.testclient import TestClient

from snapledger.core.db import SessionLocal
from snapledger.core.security import create_access_token
from snapledger.modules.identity.models import UserRole
from snapledger.modules.identity.service import create_user

RESULT = {
    "merchant": "Cafe Luna",
    "date": "2024-03-01",
    "amount": 12.5,
    "currency": "USD",
    "category": "Meals",
    "vatNumber": None,
    "vatRate": None,
    "vatAmount": None,
    "confidence": 0.94,
}


def _client_with_token(role: UserRole = UserRole.MEMBER) -> tuple[TestClient, dict[str, str]]:
    from snapledger.main import create_app

    with SessionLocal() as session:
        user = create_user(
            session, email="member@example.com", password="password", role=role
        )
        token = create_access_token(subject=str(user.id))
    return TestClient(create_app()), {"Authorization": f"Bearer {token}"}


def test_endpoints_require_authentication():
    from snapledger.main import create_app

    with TestClient(create_app()) as client:
        assert client.get("/api/expenses").status_code == 401
        assert client.get("/api/receipts").status_code == 401
        resp = client.get("/api/expenses", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401


def test_login_issues_token():
    from snapledger.main import create_app

    with SessionLocal() as session:
        create_user(session, email="Member@Example.com", password="password")

    with TestClient(create_app()) as client:
        resp = client.post(
            "/api/auth/token", data={"username": "member@example.com", "password": "password"}
        )
        assert resp.status_code == 200
        token = resp.json()["access_token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == "member@example.com"
        assert me.json()["last_login_at"] is not None

        bad = client.post(
            "/api/auth/token", data={"username": "member@example.com", "password": "nope"}
        )
        assert bad.status_code == 401


def test_upload_creates_processing_expense_and_schedules(scheduler):
    client, headers = _client_with_token()
    with client:
        resp = client.post(
            "/api/receipts",
            files={"file": ("lunch.jpg", b"\xff\xd8jpeg", "image/jpeg")},
            headers=headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["receipt"]["status"] == "PROCESSING"
        assert body["receipt"]["filename"] == "lunch.jpg"
        assert body["expense_id"]

        expense = client.get(f"/api/expenses/{body['expense_id']}", headers=headers).json()
        assert expense["status"] == "PROCESSING"
        assert expense["merchant"] == "Processing..."
        assert expense["receipt_filename"] == "lunch.jpg"
        assert expense["receipt_url"].startswith("file://")

        download = client.get(
            f"/api/receipts/{body['receipt']['id']}/download", headers=headers
        )
        assert download.status_code == 200
        assert download.content == b"\xff\xd8jpeg"

    assert scheduler.delays == [0]
    assert scheduler.last()["expense_id"] == body["expense_id"]


def test_upload_without_processing_can_be_started_later(scheduler):
    client, headers = _client_with_token()
    with client:
        resp = client.post(
            "/api/receipts?process=false",
            files={"file": ("scan.png", b"png", "image/png")},
            headers=headers,
        )
        assert resp.status_code == 200
        receipt = resp.json()["receipt"]
        assert receipt["status"] == "UPLOADED"
        assert resp.json()["expense_id"] is None
        assert client.get("/api/expenses", headers=headers).json() == []
        assert scheduler.calls == []

        started = client.post(f"/api/receipts/{receipt['id']}/process", headers=headers)
        assert started.status_code == 200
        assert started.json()["receipt"]["status"] == "PROCESSING"
        assert started.json()["expense_id"] == scheduler.last()["expense_id"]

        again = client.post(f"/api/receipts/{receipt['id']}/process", headers=headers)
        assert again.status_code == 409
    assert scheduler.delays == [0]


def test_upload_when_queue_is_down_returns_503(monkeypatch, scheduler):
    def _broken(*_args, **_kwargs):
        raise ConnectionError("broker down")

    monkeypatch.setattr(scheduler, "schedule_after", _broken)
    client, headers = _client_with_token()
    with client:
        resp = client.post(
            "/api/receipts",
            files={"file": ("lunch.jpg", b"\xff\xd8jpeg", "image/jpeg")},
            headers=headers,
        )
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Processing queue unavailable"

        receipts = client.get("/api/receipts", headers=headers).json()
        assert [r["status"] for r in receipts] == ["FAILED"]
        expenses = client.get("/api/expenses", headers=headers).json()
        assert [e["status"] for e in expenses] == ["FAILED"]


def test_empty_upload_is_rejected():
    client, headers = _client_with_token()
    with client:
        resp = client.post(
            "/api/receipts",
            files={"file": ("empty.jpg", b"", "image/jpeg")},
            headers=headers,
        )
        assert resp.status_code == 400


def test_manual_expense_edit_and_list():
    client, headers = _client_with_token()
    with client:
        created = client.post(
            "/api/expenses",
            json={
                "merchant": "Taxi Co",
                "date": "2024-05-02",
                "amount": "18.40",
                "currency": "eur",
                "category": "transport",
            },
            headers=headers,
        )
        assert created.status_code == 200
        expense = created.json()
        assert expense["status"] == "APPROVED"
        assert expense["currency"] == "EUR"
        assert expense["category"] == "Transport"
        assert expense["receipt_url"] is None

        patched = client.patch(
            f"/api/expenses/{expense['id']}", json={"notes": "Airport run"}, headers=headers
        )
        assert patched.json()["notes"] == "Airport run"

        bad = client.patch(
            f"/api/expenses/{expense['id']}", json={"category": "Yachts"}, headers=headers
        )
        assert bad.status_code == 400

        listed = client.get("/api/expenses", headers=headers).json()
        assert [e["id"] for e in listed] == [expense["id"]]

        assert client.delete(f"/api/expenses/{expense['id']}", headers=headers).status_code == 204
        assert client.get(f"/api/expenses/{expense['id']}", headers=headers).status_code == 404


def test_reprocess_endpoint(scheduler):
    client, headers = _client_with_token()
    with client:
        upload = client.post(
            "/api/receipts",
            files={"file": ("lunch.jpg", b"jpeg", "image/jpeg")},
            headers=headers,
        ).json()
        expense_id = upload["expense_id"]

        resp = client.post(f"/api/expenses/{expense_id}/reprocess", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"expense_id": expense_id, "scheduled": True}

        receipt = client.get(f"/api/receipts/{upload['receipt']['id']}", headers=headers).json()
        assert receipt["status"] == "PROCESSING"
        assert receipt["retry_count"] == 0

        expense = client.get(f"/api/expenses/{expense_id}", headers=headers).json()
        assert expense["notes"] == "Reprocessing receipt."

    assert scheduler.delays == [0, 0]
    assert scheduler.last()["generation"] == 1


def test_deleting_receipt_keeps_expense_values():
    client, headers = _client_with_token()
    with client:
        upload = client.post(
            "/api/receipts",
            files={"file": ("lunch.jpg", b"jpeg", "image/jpeg")},
            headers=headers,
        ).json()
        receipt_id = upload["receipt"]["id"]

        assert client.delete(f"/api/receipts/{receipt_id}", headers=headers).status_code == 204
        assert client.get(f"/api/receipts/{receipt_id}", headers=headers).status_code == 404

        expense = client.get(f"/api/expenses/{upload['expense_id']}", headers=headers).json()
        assert expense["receipt_id"] is None
        assert expense["merchant"] == "Processing..."

        resp = client.post(f"/api/expenses/{upload['expense_id']}/reprocess", headers=headers)
        assert resp.json()["scheduled"] is False


def test_analyze_returns_extracted_fields(monkeypatch):
    from snapledger.modules.extraction import service as extraction_service
    from snapledger.modules.extraction.schemas import ExtractedReceipt, ExtractionResult

    calls: list[str] = []

    def _stub(*, body, filename, mime_type):
        calls.append(filename)
        return ExtractionResult(fields=ExtractedReceipt.model_validate(RESULT), raw=RESULT)

    monkeypatch.setattr(extraction_service, "extract_document", _stub)

    client, headers = _client_with_token()
    with client:
        resp = client.post(
            "/api/analyze",
            files={"file": ("lunch.jpg", b"jpeg", "image/jpeg")},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json() == RESULT
        assert client.get("/api/receipts", headers=headers).json() == []
    assert calls == ["lunch.jpg"]


def test_analyze_maps_failures_to_http_errors(monkeypatch):
    from snapledger.modules.extraction import service as extraction_service
    from snapledger.modules.extraction.schemas import (
        ExtractionErrorKind,
        ExtractionFailure,
        MissingCredentials,
    )

    client, headers = _client_with_token()
    upload = {"file": ("lunch.jpg", b"jpeg", "image/jpeg")}

    def _missing(**_kwargs):
        raise MissingCredentials("OPENAI_API_KEY is not set.")

    def _failed(**_kwargs):
        return ExtractionFailure(
            kind=ExtractionErrorKind.REQUEST_FAILED,
            message="OpenAI request failed.",
            http_status=429,
            detail="rate limited",
        )

    with client:
        monkeypatch.setattr(extraction_service, "extract_document", _missing)
        resp = client.post("/api/analyze", files=upload, headers=headers)
        assert resp.status_code == 500
        assert resp.json()["detail"] == "OPENAI_API_KEY is not set."

        monkeypatch.setattr(extraction_service, "extract_document", _failed)
        resp = client.post("/api/analyze", files=upload, headers=headers)
        assert resp.status_code == 502
        assert resp.json()["detail"] == {
            "error": "OpenAI request failed.",
            "kind": "REQUEST_FAILED",
            "status": 429,
            "details": "rate limited",
        }

        empty = client.post(
            "/api/analyze", files={"file": ("x.jpg", b"", "image/jpeg")}, headers=headers
        )
        assert empty.status_code == 400


def test_only_admins_create_users():
    client, headers = _client_with_token(UserRole.MEMBER)
    with SessionLocal() as session:
        admin = create_user(
            session, email="admin@example.com", password="password", role=UserRole.ADMIN
        )
        admin_headers = {"Authorization": f"Bearer {create_access_token(subject=str(admin.id))}"}

    payload = {"email": "new@example.com", "password": "long-enough-pw"}
    with client:
        assert client.post("/api/users", json=payload, headers=headers).status_code == 403

        resp = client.post("/api/users", json=payload, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json()["role"] == "MEMBER"
        dup = client.post("/api/users", json=payload, headers=admin_headers)
        assert dup.status_code == 409


def test_healthz_reports_storage_backend():
    from snapledger.main import create_app

    with TestClient(create_app()) as client:
        assert client.get("/healthz").json() == {"status": "ok"}
        resp = client.get("/healthz/storage?write_test=true")
        assert resp.status_code == 200
        body = resp.json()
        assert body["backend"] == "local"
        assert body["write_test"]["ok"] is True
        assert "x-request-id" in resp.headers
