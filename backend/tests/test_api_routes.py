"""
test_api_routes.py - API tests through FastAPI's TestClient.

Tests cover:
  - /api/calculations CRUD, ordering, 404s, amount derivation from content
  - Save validation (400), malformed content (422) and column length limits
  - The list response leaves out the calculation tree
  - Notices published by save/delete
  - /api/estimates compute, evaluate and export (download name, file cleanup)
  - /api/templates listing and instantiation
  - /api/reference proxy with a mocked reference-data service
  - /health and the request-id / timing headers

The database is an in-memory SQLite instance (see conftest.client).
"""

import httpx
import pytest

from kalkyl.config import MSG_DELETED, MSG_NO_SECTIONS, MSG_NON_POSITIVE_BID, MSG_SAVED

NBSP = "\u00a0"


def _record(**overrides):
    body = {
        "name": "Villa Ekbacken",
        "project": "Ekbacken 1",
        "status": "Aktiv",
        "amount": "1 000 kr",
        "created": "2024-03-01",
        "createdBy": "Anna Berg",
        "revision": "Rev 1",
    }
    body.update(overrides)
    return body


class TestCalculationsApi:
    """/api/calculations."""

    def test_create_and_get(self, client):
        resp = client.post("/api/calculations", json=_record())
        assert resp.status_code == 201
        created = resp.json()
        assert created["id"] >= 1
        assert created["createdBy"] == "Anna Berg"
        assert created["created"] == "2024-03-01"
        assert created["revision"] == "Rev 1"

        fetched = client.get(f"/api/calculations/{created['id']}").json()
        assert fetched == created

    def test_list_newest_first(self, client):
        client.post("/api/calculations", json=_record(name="Äldst", created="2023-01-01"))
        client.post("/api/calculations", json=_record(name="Nyast", created="2024-06-01"))
        client.post("/api/calculations", json=_record(name="Mitten", created="2023-09-15"))
        names = [c["name"] for c in client.get("/api/calculations").json()]
        assert names == ["Nyast", "Mitten", "Äldst"]

    def test_update(self, client):
        calc_id = client.post("/api/calculations", json=_record()).json()["id"]
        resp = client.put(f"/api/calculations/{calc_id}", json=_record(status="Avslutad", revision=None))
        assert resp.status_code == 200
        assert resp.json()["status"] == "Avslutad"
        assert resp.json()["revision"] is None

    def test_delete(self, client):
        calc_id = client.post("/api/calculations", json=_record()).json()["id"]
        assert client.delete(f"/api/calculations/{calc_id}").status_code == 204
        assert client.get(f"/api/calculations/{calc_id}").status_code == 404
        notices = [n["message"] for n in client.get("/api/notifications").json()]
        assert MSG_DELETED in notices

    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_missing_record_404(self, client, method):
        kwargs = {"json": _record()} if method == "put" else {}
        resp = getattr(client, method)("/api/calculations/9999", **kwargs)
        assert resp.status_code == 404

    def test_unknown_status_rejected(self, client):
        assert client.post("/api/calculations", json=_record(status="Pågår")).status_code == 422

    def test_amount_derived_from_content(self, client, sample_payload):
        """The client amount is replaced by the formatted bid amount."""
        resp = client.post("/api/calculations", json=_record(amount="1 kr", content=sample_payload))
        assert resp.status_code == 201
        body = resp.json()
        assert body["amount"] == f"1{NBSP}080 kr"
        row = body["content"]["sections"][0]["subsections"][0]["rows"][0]
        assert row["amount"] == 1000
        assert row["account"] is None
        notices = client.app.state.notifications.snapshot()
        assert [n.message for n in notices] == [MSG_SAVED]

    def test_content_without_sections_rejected(self, client):
        resp = client.post("/api/calculations", json=_record(content={"name": "Tom", "sections": []}))
        assert resp.status_code == 400
        assert resp.json()["detail"] == MSG_NO_SECTIONS
        notices = client.app.state.notifications.snapshot()
        assert [(n.kind, n.message) for n in notices] == [("error", MSG_NO_SECTIONS)]
        assert client.get("/api/calculations").json() == []

    def test_zero_bid_rejected(self, client):
        content = {"sections": [{"subsections": [{"rows": []}]}]}
        resp = client.post("/api/calculations", json=_record(content=content))
        assert resp.status_code == 400
        assert resp.json()["detail"] == MSG_NON_POSITIVE_BID

    def test_malformed_content_422(self, client):
        content = {"sections": [{"subsections": [{"rows": [{"quantity": "many"}]}]}]}
        resp = client.post("/api/calculations", json=_record(content=content))
        assert resp.status_code == 422
        error = resp.json()["detail"][0]
        assert error["loc"] == ["body", "content", "sections", 0, "subsections", 0, "rows", 0, "quantity"]

    def test_duplicate_content_ids_422(self, client):
        content = {"sections": [{"id": 1}, {"id": 1}]}
        resp = client.post("/api/calculations", json=_record(content=content))
        assert resp.status_code == 422
        assert resp.json()["detail"].startswith("sections[1].id")

    def test_server_shaped_content_accepted(self, client):
        content = {
            "name": "Kontor",
            "sections": [{"title": "Mark", "budgetRows": [], "subSections": [
                {"title": "Schakt", "budgetRows": [{"name": "Grävning", "quantity": 2, "price": 500}]},
            ]}],
        }
        body = client.post("/api/calculations", json=_record(content=content)).json()
        section = body["content"]["sections"][0]
        assert section["name"] == "Mark"
        assert section["subsections"][0]["rows"][0]["description"] == "Grävning"

    @pytest.mark.parametrize(
        "field, length",
        [("revision", 51), ("project", 256), ("createdBy", 256), ("name", 256)],
    )
    def test_over_long_columns_rejected(self, client, field, length):
        resp = client.post("/api/calculations", json=_record(**{field: "x" * length}))
        assert resp.status_code == 422
        assert client.get("/api/calculations").json() == []

    def test_revision_at_column_limit(self, client):
        resp = client.post("/api/calculations", json=_record(revision="r" * 50))
        assert resp.status_code == 201

    def test_list_omits_content(self, client, sample_payload):
        calc_id = client.post("/api/calculations", json=_record(content=sample_payload)).json()["id"]
        listed = client.get("/api/calculations").json()[0]
        assert "content" not in listed
        assert set(listed) == {"id", "name", "project", "status", "amount", "created", "createdBy", "revision"}
        assert client.get(f"/api/calculations/{calc_id}").json()["content"]["sections"]


class TestEstimatesApi:
    """/api/estimates."""

    def test_compute(self, client, sample_payload):
        resp = client.post("/api/estimates/compute", json=sample_payload)
        assert resp.status_code == 200
        body = resp.json()
        assert body["totalCo2"] == 50
        assert body["summary"]["budgetExclRate"] == 1000
        assert body["summary"]["bidAmount"] == pytest.approx(1080)
        assert body["summary"]["exceedsBudget"] is False
        assert body["formattedBid"] == f"1{NBSP}080 kr"
        assert body["calculation"]["sections"][0]["amount"] == 1000

    def test_compute_malformed(self, client):
        assert client.post("/api/estimates/compute", json={"area": "stor"}).status_code == 422

    @pytest.mark.parametrize(
        "payload, expected",
        [
            ({"expression": "2+3*4"}, {"value": 14.0, "ok": True}),
            ({"expression": "10/0"}, {"value": None, "ok": False}),
            ({"expression": "7/2", "integer": True}, {"value": 3.0, "ok": True}),
            ({"expression": "3.5", "integer": True}, {"value": None, "ok": False}),
        ],
    )
    def test_evaluate(self, client, payload, expected):
        assert client.post("/api/estimates/evaluate", json=payload).json() == expected

    def test_export_csv(self, client, sample_payload):
        resp = client.post("/api/estimates/export/csv", json=sample_payload)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.text.splitlines()[0] == "Nivå 1,Nivå 2,Nivå 3,Benämning,Antal,Enhet,Pris/enhet,Summa"

    def test_export_pdf(self, client, sample_payload):
        resp = client.post("/api/estimates/export/pdf?created_by=Anna", json=sample_payload)
        assert resp.status_code == 200
        assert resp.content[:5] == b"%PDF-"

    def test_export_xlsx(self, client, sample_payload):
        resp = client.post("/api/estimates/export/xlsx", json=sample_payload)
        assert resp.status_code == 200
        assert resp.content[:2] == b"PK"

    def test_export_download_name_and_cleanup(self, client, sample_payload, tmp_path):
        """The download keeps the calculation name; the stored file is removed after sending."""
        sample_payload["name"] = "Villa"
        resp = client.post("/api/estimates/export/csv", json=sample_payload)
        assert resp.status_code == 200
        assert 'filename="Villa_budget.csv"' in resp.headers["content-disposition"]
        assert list(tmp_path.iterdir()) == []

    def test_export_pdf_full_name(self, client, sample_payload):
        sample_payload["name"] = "Villa"
        resp = client.post("/api/estimates/export/pdf?only_expanded=false", json=sample_payload)
        assert resp.status_code == 200
        assert "_full.pdf" in resp.headers["content-disposition"]

    def test_export_unknown_format(self, client, sample_payload):
        assert client.post("/api/estimates/export/docx", json=sample_payload).status_code == 400


class TestTemplatesApi:
    """/api/templates."""

    def test_list(self, client):
        ids = [t["id"] for t in client.get("/api/templates").json()]
        assert ids[0] == "empty"
        assert "office" in ids

    def test_get_one_and_missing(self, client):
        assert client.get("/api/templates/renovation").json()["title"]
        assert client.get("/api/templates/nope").status_code == 404

    def test_instantiate(self, client):
        resp = client.post("/api/templates/generalContracting/instantiate", json={"name": "Ny", "rate": 10})
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "Ny"
        assert body["rate"] == 10
        assert body["sections"][0]["amount"] == 5_117_400
        assert body["sections"][0]["expanded"] is False

    def test_instantiate_without_body(self, client):
        body = client.post("/api/templates/empty/instantiate").json()
        assert len(body["sections"]) == 3

    def test_instantiate_missing(self, client):
        assert client.post("/api/templates/nope/instantiate", json={}).status_code == 404

    def test_custom(self, client):
        body = client.post("/api/templates/custom", json={"name": "Garage", "sections": ["Grund", "Tak"]}).json()
        assert [s["name"] for s in body["sections"]] == ["Grund", "Tak"]


class TestReferenceApi:
    """/api/reference with the client dependency overridden."""

    @pytest.fixture
    def reference_client(self, client):
        from kalkyl.api.template_routes import get_reference_client
        from kalkyl.services.reference_data import ReferenceDataClient

        state = {"status": 200}

        def handler(request: httpx.Request) -> httpx.Response:
            if state["status"] != 200:
                return httpx.Response(state["status"], json={})
            if request.url.path == "/co2-items/search":
                return httpx.Response(200, json=[{"id": 3, "artikelnamn": "Trä", "kategori": "Trä",
                                                  "co2Varde": 0.4, "enhet": "m3"}])
            return httpx.Response(200, json=[{"accountNumber": "4010", "description": "Material"}])

        client.app.dependency_overrides[get_reference_client] = lambda: ReferenceDataClient(
            base_url="http://refdata.test", retries=1, backoff_s=0, transport=httpx.MockTransport(handler),
        )
        return state

    def test_accounts(self, client, reference_client):
        body = client.get("/api/reference/bookkeeping-accounts").json()
        assert body == [{"account_number": "4010", "description": "Material"}]

    def test_co2_search(self, client, reference_client):
        body = client.get("/api/reference/co2-items", params={"q": "trä"}).json()
        assert body[0]["co2_value"] == 0.4
        assert client.get("/api/reference/co2-items", params={"q": "tr"}).json() == []

    def test_upstream_failure_502(self, client, reference_client):
        reference_client["status"] = 500
        assert client.get("/api/reference/unit-types").status_code == 502


class TestAppSurface:
    """/health, notifications and middleware headers."""

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "active"

    def test_request_headers(self, client):
        resp = client.get("/api/templates")
        assert resp.headers["X-Request-ID"]
        assert float(resp.headers["X-Process-Time"]) >= 0
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

    def test_request_id_passthrough(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    def test_dismiss_notification(self, client):
        notice = client.app.state.notifications.success("Hej")
        assert client.delete(f"/api/notifications/{notice.id}").status_code == 204
        assert client.get("/api/notifications").json() == []
