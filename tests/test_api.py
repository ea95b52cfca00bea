import asyncio

import pytest
from fastapi.testclient import TestClient

from api.server import create_app

WEBHOOK_BODY = {"type": "payment", "data": {"id": "pay-1"}}


def checkout(client, payload) -> dict:
    response = client.post("/create-payment", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


class TestEndToEnd:
    def test_paid_calculation_is_delivered(self, client, processor, leads, notifier, ana_payload):
        created = checkout(client, ana_payload)
        assert created["success"] is True
        session_id = created["preference_id"]
        assert created["init_point"] == f"https://pay.example/checkout/{session_id}"

        assert client.get(f"/status/{session_id}").json() == {"status": "pending"}
        assert client.get(f"/download/{session_id}").status_code == 404

        processor.set_payment("pay-1", processor.last_correlation_id)
        response = client.post("/webhook", json=WEBHOOK_BODY)
        assert response.status_code == 200
        assert response.text == "OK"

        assert client.get(f"/status/{session_id}").json() == {"status": "ready"}
        download = client.get(f"/download/{session_id}")
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/pdf"
        assert "calculo-rescisao-detalhado.pdf" in download.headers["content-disposition"]
        assert download.content.startswith(b"%PDF")

        assert asyncio.run(leads.count_by_email("ana@x.com")) == 1
        assert len(notifier.sent) == 1

        # redelivery is acknowledged and changes nothing
        again = client.post("/webhook", json=WEBHOOK_BODY)
        assert again.status_code == 200
        assert asyncio.run(leads.count_by_email("ana@x.com")) == 1
        assert len(notifier.sent) == 1

        # retained by default
        assert client.get(f"/download/{session_id}").status_code == 200

    def test_route_aliases(self, client, processor, ana_payload):
        session_id = client.post("/checkout", json=ana_payload).json()["session_id"]
        processor.set_payment("pay-1", processor.last_correlation_id)

        assert client.post("/payment-webhook", json={"kind": "payment", "paymentId": "pay-1"}).text == "OK"
        assert client.get(f"/artifact-status/{session_id}").json() == {"status": "ready"}
        assert client.get(f"/artifact/{session_id}").content.startswith(b"%PDF")


class TestPreview:
    def test_breakdown_with_form_keys(self, client):
        response = client.post("/preview-calculation", json={
            "last-salary": "3000",
            "start-date": "2022-01-10",
            "end-date": "2023-06-20",
            "ferias-vencidas": "1",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["Saldo de Salário"] == 2000.0
        assert body["Multa de 40% do FGTS (Estimativa)"] == 1728.0
        assert body["TOTAL GERAL ESTIMADO"] == 14228.0
        assert list(body)[-1] == "TOTAL GERAL ESTIMADO"

    def test_invalid_dates(self, client):
        response = client.post("/preview", json={"lastSalary": 3000, "startDate": "2023-01-01", "endDate": "2022-01-01"})
        assert response.status_code == 200
        assert response.json() == {}

    def test_preview_has_no_side_effects(self, client, processor):
        client.post("/preview", json={"lastSalary": 3000})
        assert processor.requests == []
        assert client.get("/admin/orders/summary").json() == {"pending": 0, "fulfilled": 0, "stale": 0}


class TestCheckout:
    def test_processor_failure_is_502(self, client, processor, ana_payload):
        processor.fail_create = True

        response = client.post("/create-payment", json=ana_payload)

        assert response.status_code == 502
        body = response.json()
        assert body["retryable"] is True
        assert "processor down" not in response.text
        assert client.get("/admin/orders/summary").json()["pending"] == 0

    @pytest.mark.parametrize("payload", [
        {"name": "Ana"},
        {"email": "not-an-email"},
        {"email": "ana@x.com", "lastSalary": -1},
    ])
    def test_invalid_order(self, client, payload):
        assert client.post("/create-payment", json=payload).status_code == 422

    def test_summary_counts_pending(self, client, ana_payload):
        checkout(client, ana_payload)
        checkout(client, ana_payload)
        assert client.get("/admin/orders/summary").json() == {"pending": 2, "fulfilled": 0, "stale": 0}


class TestWebhook:
    def test_lookup_failure_asks_for_redelivery(self, client, processor, ana_payload):
        checkout(client, ana_payload)
        processor.fail_lookup = True

        response = client.post("/webhook", json=WEBHOOK_BODY)

        assert response.status_code == 500
        assert response.text == "error"

    def test_render_failure_asks_for_redelivery(self, client, context, processor, ana_payload):
        session_id = checkout(client, ana_payload)["preference_id"]
        processor.set_payment("pay-1", processor.last_correlation_id)

        async def broken_render(order):
            raise RuntimeError("renderer crashed")

        context.fulfillment.renderer.render = broken_render

        response = client.post("/webhook", json=WEBHOOK_BODY)
        assert response.status_code == 500
        assert response.text == "error"
        assert "renderer crashed" not in response.text
        assert client.get(f"/status/{session_id}").json() == {"status": "pending"}

    def test_unknown_reference_is_acknowledged(self, client, processor):
        processor.set_payment("pay-1", "corr-nobody")
        assert client.post("/webhook", json=WEBHOOK_BODY).text == "OK"

    def test_non_payment_event_is_acknowledged(self, client, processor):
        response = client.post("/webhook", json={"type": "merchant_order", "data": {"id": "1"}})
        assert response.status_code == 200
        assert processor.lookups == []

    def test_malformed_body(self, client):
        response = client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.text == "invalid"


class TestStatusAndDownload:
    @pytest.mark.parametrize("path", ["/status/pref-404", "/download/pref-404", "/status/bad%20id"])
    def test_unknown_session(self, client, path):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json() == {"error": "Não encontrado"}

    def test_one_time_download(self, context, processor, ana_payload):
        context.status.one_time_download = True

        with TestClient(create_app(context)) as client:
            session_id = checkout(client, ana_payload)["preference_id"]
            processor.set_payment("pay-1", processor.last_correlation_id)
            client.post("/webhook", json=WEBHOOK_BODY)

            assert client.get(f"/download/{session_id}").status_code == 200
            assert client.get(f"/download/{session_id}").status_code == 404
            assert client.get(f"/status/{session_id}").status_code == 404


class TestOperational:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["processor"] == "fake"
        assert body["database"] == "in_memory"
        assert body["uptime_seconds"] >= 0

    def test_probes(self, client):
        assert client.get("/ready").json() == {"ready": True}
        assert client.get("/live").json() == {"live": True}

    def test_request_headers(self, client):
        response = client.get("/live")
        assert len(response.headers["X-Request-ID"]) == 8
        assert float(response.headers["X-Response-Time-Ms"]) >= 0

    def test_injected_context_is_left_open(self, context, processor):
        with TestClient(create_app(context)):
            pass
        assert processor.closed is False
