"""HTTP API tests through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from jewels.api import create_app

from .support import GUEST_ID, lock_held_elsewhere


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


class TestJewelsRoutes:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_earn_then_balance(self, client):
        response = client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 150, "reference": "BK-1"})

        assert response.status_code == 201
        body = response.json()
        assert body["delta"] == 150
        assert body["reason"] == "booking_reward"

        balance = client.get(f"/users/{GUEST_ID}/balance").json()
        assert balance["active"] == 150
        assert balance["lifetime_earned"] == 150

    def test_earn_rejects_non_positive(self, client):
        response = client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 0})

        assert response.status_code == 422

    def test_earn_idempotency_conflict(self, client):
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 100, "idempotency_key": "bk-9"})

        response = client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 120, "idempotency_key": "bk-9"})

        assert response.status_code == 409

    def test_redeem_success(self, client):
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 100})
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 50})

        response = client.post(f"/users/{GUEST_ID}/redeem", json={"jewels": 120})

        assert response.status_code == 200
        body = response.json()
        assert body["jewels_redeemed"] == 120
        assert body["new_active_balance"] == 30
        assert body["discount_amount"] in ("120.00", 120.0)

    def test_redeem_below_minimum(self, client):
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 500})

        response = client.post(f"/users/{GUEST_ID}/redeem", json={"jewels": 99})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "below_minimum_threshold"
        assert detail["minimum"] == 100

    def test_redeem_insufficient_balance(self, client):
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 120})

        response = client.post(f"/users/{GUEST_ID}/redeem", json={"jewels": 200})

        assert response.status_code == 409
        assert response.json()["detail"]["active_balance"] == 120

    def test_ledger_history(self, client):
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 300})
        client.post(f"/users/{GUEST_ID}/redeem", json={"jewels": 100})

        body = client.get(f"/users/{GUEST_ID}/ledger", params={"limit": 1}).json()

        assert body["total_count"] == 2
        assert [e["delta"] for e in body["entries"]] == [-100]
        assert body["active_balance"] == 200

    def test_ledger_history_rejects_bad_paging(self, client):
        response = client.get(f"/users/{GUEST_ID}/ledger", params={"limit": 0})

        assert response.status_code == 400


class TestAdminRoutes:

    def test_manual_add_and_remove(self, client):
        added = client.post(
            f"/admin/users/{GUEST_ID}/adjustments",
            json={"adjustment_type": "add", "amount": 80, "reason": "Goodwill", "performed_by": "ops"},
        )
        removed = client.post(
            f"/admin/users/{GUEST_ID}/adjustments",
            json={"adjustment_type": "remove", "amount": 30},
        )

        assert added.status_code == 201
        assert removed.status_code == 201
        assert removed.json()["delta"] == -30
        assert client.get(f"/users/{GUEST_ID}/balance").json()["active"] == 50

    def test_manual_remove_overdraft(self, client):
        response = client.post(
            f"/admin/users/{GUEST_ID}/adjustments",
            json={"adjustment_type": "remove", "amount": 30},
        )

        assert response.status_code == 400

    def test_sweep_and_verify(self, client, clock):
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 100, "expires_at": clock.day(5).isoformat()})
        clock.advance(days=6)

        report = client.post("/admin/sweep", json={}).json()
        check = client.get(f"/admin/users/{GUEST_ID}/summary/verify").json()

        assert report["lots_expired"] == 1
        assert report["users_affected"] == 1
        assert check["consistent"] is True

    def test_redeem_during_lock_contention(self, client, service):
        service.log.lock_timeout = 0.05
        client.post(f"/users/{GUEST_ID}/earn", json={"jewels": 300})

        with lock_held_elsewhere(service.log, GUEST_ID):
            response = client.post(f"/users/{GUEST_ID}/redeem", json={"jewels": 100})

        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"


def test_serverless_handler_wraps_app():
    from mangum import Mangum

    from api.index import handler

    assert isinstance(handler, Mangum)
