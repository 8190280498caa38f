"""
Tests for the HTTP surface.

The app is built around a test registry (manual clock and scheduler,
scripted embedded sessions, mocked gateway and webhook endpoints).
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from kesher.app.main import create_app
from kesher.config import AppSettings
from kesher.transports import create_gateway_factory

API = "/api/v1"


@pytest.fixture
def gateway_handler():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/status"):
            return httpx.Response(200, json={"connected": True})
        if path.endswith("/send-text"):
            return httpx.Response(200, json={"messageId": "M1"})
        return httpx.Response(200, json={"value": True})

    return handler


@pytest.fixture
def client(registry, gateway_handler):
    registry.families.register(
        "gateway",
        create_gateway_factory(
            base_url="https://gw.test",
            transport=httpx.MockTransport(gateway_handler),
        ),
    )
    app = create_app(AppSettings(service_name="kesher-test"), registry=registry)
    with TestClient(app) as test_client:
        yield test_client


def create_gateway(client, instance_id="support"):
    return client.post(
        f"{API}/instances",
        json={
            "instance_id": instance_id,
            "family": "gateway",
            "gateway": {"instance_id": "G1", "token": "T1"},
        },
    )


class TestService:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "kesher-test"
        assert response.json()["status"] == "running"

    def test_health(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert set(data["families"]) == {"embedded", "gateway"}
        assert data["instances"]["total"] == 1


class TestInstances:
    def test_create_and_duplicate(self, client):
        first = client.post(f"{API}/instances", json={"instance_id": "sales"})
        second = client.post(f"{API}/instances", json={"instance_id": "sales"})

        assert first.status_code == 201
        assert first.json() == {
            "success": True,
            "instance_id": "sales",
            "family": "embedded",
            "status": "disconnected",
        }
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "already_exists"

    def test_unknown_family_is_bad_request(self, client):
        response = client.post(f"{API}/instances", json={"instance_id": "x", "family": "fax"})

        assert response.status_code == 400

    def test_unknown_instance(self, client):
        assert client.get(f"{API}/instances/ghost").status_code == 404
        assert client.post(f"{API}/instances/ghost/connect").status_code == 404

    def test_list_and_stats(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})
        create_gateway(client)

        listing = client.get(f"{API}/instances").json()
        stats = client.get(f"{API}/instances/stats").json()

        assert listing["total"] == 2
        assert stats["total"] == 2
        assert stats["disconnected"] == 2

    def test_connect_busy_and_throttled(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        accepted = client.post(f"{API}/instances/sales/connect")
        busy = client.post(f"{API}/instances/sales/connect")
        client.post(f"{API}/instances/sales/disconnect")
        throttled = client.post(f"{API}/instances/sales/connect")

        assert accepted.status_code == 202
        assert busy.status_code == 409
        assert busy.json()["error"]["code"] == "busy"
        assert throttled.status_code == 429
        assert throttled.headers["Retry-After"] == "30"
        assert throttled.json()["error"]["retry_after"] == 30.0

    def test_pairing_not_available(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        response = client.get(f"{API}/instances/sales/pairing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_available"

    def test_force_reset(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        response = client.post(f"{API}/instances/sales/force-reset")

        assert response.status_code == 202
        assert response.json()["reconnect_in"] == 2.0

    def test_remove(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        response = client.delete(f"{API}/instances/sales", params={"wipe_credentials": "true"})

        assert response.status_code == 200
        assert response.json()["wiped_keys"] == 0
        assert client.get(f"{API}/instances/sales").status_code == 404


class TestMessages:
    def test_send_not_connected(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        response = client.post(
            f"{API}/instances/sales/messages/text",
            json={"phone": "5511999999999", "text": "hi"},
        )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "not_connected"

    def test_send_through_gateway(self, client):
        create_gateway(client)
        connect = client.post(f"{API}/instances/support/connect")

        response = client.post(
            f"{API}/instances/support/messages/text",
            json={"phone": "5511999999999", "text": "hi"},
        )

        assert connect.status_code == 202
        assert connect.json()["status"] == "connected"
        assert response.status_code == 200
        assert response.json() == {"success": True, "message_id": "M1"}

    def test_body_validation(self, client):
        response = client.post(f"{API}/instances/sales/messages/text", json={"phone": "1"})

        assert response.status_code == 422


class TestWebhooks:
    def test_register_list_remove(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        created = client.post(
            f"{API}/instances/sales/webhooks",
            json={"url": "https://a.example/h", "events": ["message"]},
        )
        webhook_id = created.json()["webhook_id"]
        listed = client.get(f"{API}/instances/sales/webhooks").json()["webhooks"]
        removed = client.delete(f"{API}/instances/sales/webhooks/{webhook_id}")

        assert created.status_code == 201
        assert listed[0]["events"] == ["message"]
        assert removed.status_code == 200

    def test_register_invalid_url(self, client):
        client.post(f"{API}/instances", json={"instance_id": "sales"})

        response = client.post(f"{API}/instances/sales/webhooks", json={"url": "nope"})

        assert response.status_code == 400

    def test_callback_relayed(self, client, webhook_server):
        create_gateway(client)
        client.post(f"{API}/instances/support/webhooks", json={"url": "https://a.example/h"})

        response = client.post(
            f"{API}/callbacks/support",
            json={"phone": "5511999", "messageId": "A", "text": {"message": "hi"}},
        )

        assert response.status_code == 200
        assert response.json()["forwarded"] is True
        assert response.json()["delivery"]["succeeded"] == 1
        assert webhook_server.bodies("message")[0]["data"]["body"] == "hi"

    def test_callback_rejects_non_json(self, client):
        create_gateway(client)

        response = client.post(
            f"{API}/callbacks/support",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    def test_callback_unknown_instance(self, client):
        response = client.post(f"{API}/callbacks/ghost", json={"text": "hi"})

        assert response.status_code == 404

    def test_delivery_log(self, client):
        create_gateway(client)
        client.post(f"{API}/callbacks/support", json={"phone": "5511999", "text": "hi"})

        log = client.get(f"{API}/deliveries", params={"limit": 5}).json()
        cleared = client.delete(f"{API}/deliveries").json()

        assert log["total"] == 1
        assert log["entries"][0]["instanceId"] == "support"
        assert cleared["cleared"] == 1


class TestBulkAndDiagnostics:
    def test_bulk_send(self, client):
        create_gateway(client)
        client.post(f"{API}/instances/support/connect")

        response = client.post(
            f"{API}/instances/support/messages/bulk",
            json={"phones": ["5511999999999", "123", "5511888888888"], "text": "hi", "delay": 0},
        )

        data = response.json()
        assert response.status_code == 200
        assert (data["total"], data["sent"], data["failed"]) == (3, 2, 1)
        assert data["details"][1]["error"]["code"] == "invalid_target"

    def test_bulk_send_validation(self, client):
        create_gateway(client)

        empty = client.post(f"{API}/instances/support/messages/bulk", json={"phones": [], "text": "hi"})
        negative = client.post(
            f"{API}/instances/support/messages/bulk",
            json={"phones": ["5511999999999"], "text": "hi", "delay": -1},
        )

        assert empty.status_code == 422
        assert negative.status_code == 422

    def test_test_event_default_sample(self, client, webhook_server):
        create_gateway(client)
        client.post(f"{API}/instances/support/webhooks", json={"url": "https://a.example/h"})

        response = client.post(f"{API}/instances/support/webhooks/test")

        assert response.status_code == 200
        assert response.json()["envelope"]["body"] == "Kesher test message"
        assert response.json()["delivery"]["succeeded"] == 1
        assert webhook_server.bodies("message")[0]["data"]["phone"] == "5511999999999"

    def test_test_event_rejects_non_message(self, client):
        create_gateway(client)

        response = client.post(
            f"{API}/instances/support/webhooks/test", json={"type": "DeliveryCallback"}
        )

        assert response.status_code == 400
        assert response.json()["forwarded"] is False

    def test_describe_callback(self, client):
        create_gateway(client)
        client.post(
            f"{API}/instances/support/webhooks",
            json={"url": "https://a.example/h", "events": ["message"]},
        )
        client.post(
            f"{API}/instances/support/webhooks",
            json={"url": "https://s.example/h", "events": ["status"]},
        )

        data = client.get(f"{API}/callbacks/support").json()

        assert data["active"] is True
        assert data["destinations"] == ["https://a.example/h"]
        assert "messageId" in data["forwarded_format"]
        assert client.get(f"{API}/callbacks/ghost").status_code == 404
