from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from apps.api.main import create_app
from helpers import NOW, FakeClock, RecordingNotifier, seed_deadline, seed_receipt
from packages.common.config import Settings
from packages.common.context import build_context
from packages.domain.credentials.oauth_client import encode_state

ADMIN = {"X-Admin-Token": "admin-secret"}


def google_token_endpoint(request):
    form = parse_qs(request.content.decode())
    if form.get("code") == ["good-code"]:
        return httpx.Response(200, json={
            "access_token": "access-1",
            "expires_in": 3600,
            "refresh_token": "refresh-1",
            "scope": "openid email",
        })
    return httpx.Response(400, json={"error": "invalid_grant"})


class Api:
    """Test client plus handles on what the app was built with"""

    def __init__(self, db_path, **overrides):
        self.notifier = RecordingNotifier()
        self.seeded = {}
        values = dict(
            DATABASE_URL=f"sqlite:///{db_path}",
            ENVIRONMENT="test",
            ADMIN_TOKEN="admin-secret",
            GOOGLE_CLIENT_ID="client-id",
            GOOGLE_CLIENT_SECRET="client-secret",
            GOOGLE_REDIRECT_URI="https://app.example.test/api/v1/connectors/google/callback",
            GOOGLE_TOKEN_ENDPOINT="https://oauth2.example.test/token",
            RETRY_BASE_DELAY_SECONDS=0,
        )
        values.update(overrides)
        self.settings = Settings(**values)
        self.app = create_app(self.settings, context_builder=self.build)

    async def build(self, settings):
        ctx = await build_context(settings, notifier_override=self.notifier, clock=FakeClock())
        await ctx.http.aclose()
        ctx.http = httpx.AsyncClient(transport=httpx.MockTransport(google_token_endpoint))
        await ctx.db.create_all()

        receipt_id = await seed_receipt(ctx.db, purchase_date=NOW - timedelta(days=3))
        self.seeded["receipt_id"] = receipt_id
        self.seeded["deadline_id"] = await seed_deadline(ctx.db, receipt_id, NOW + timedelta(days=12))
        return ctx


@pytest.fixture
def api(db_path):
    return Api(db_path)


@pytest.fixture
def client(api):
    with TestClient(api.app) as client:
        yield client


def test_health_and_root(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["services"] == {"database": "connected"}

    assert client.get("/").json()["name"] == "Covrily API"


def test_metrics_endpoint(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "covrily_notifications_sent_total" in response.text


def test_preview_with_price_drop(api, client):
    response = client.get("/api/v1/decisions/preview", params={
        "receipt_id": api.seeded["receipt_id"],
        "current_price": "279.99",
    })

    assert response.status_code == 200
    preview = response.json()["preview"]
    assert preview["suggestion"] == "price_adjust"
    assert preview["totals"] == {"purchase_cents": 34999, "current_cents": 27999, "savings_cents": 7000}


def test_preview_unknown_receipt(client):
    response = client.get("/api/v1/decisions/preview", params={"receipt_id": "nope"})
    assert response.status_code == 404


def test_price_check_hides_behind_admin_token(api, client):
    body = {"receipt_id": api.seeded["receipt_id"], "current_price_cents": 27999}

    assert client.post("/api/v1/decisions/price-check", json=body).status_code == 404
    assert client.post(
        "/api/v1/decisions/price-check", json=body, headers={"X-Admin-Token": "wrong"}
    ).status_code == 404


def test_price_check_dry_run_sends_nothing(api, client):
    response = client.post("/api/v1/decisions/price-check", headers=ADMIN, json={
        "receipt_id": api.seeded["receipt_id"],
        "current_price_cents": 27999,
    })

    assert response.status_code == 200
    payload = response.json()
    assert payload["preview"]["suggestion"] == "price_adjust"
    assert payload["email"] == {"attempted": False, "sent": False, "to": None}
    assert api.notifier.sent == []


def test_price_check_send_emails_the_user(api, client):
    response = client.post("/api/v1/decisions/price-check", headers=ADMIN, json={
        "receipt_id": api.seeded["receipt_id"],
        "current_price": 279.99,
        "send": True,
    })

    assert response.json()["email"] == {"attempted": True, "sent": True, "to": "shopper@example.com"}
    to, subject, body = api.notifier.sent[0]
    assert subject == "Price drop found for Best Buy"
    assert "Potential savings: $70.00" in body


def test_price_check_small_drop_is_not_emailed(api, client):
    response = client.post("/api/v1/decisions/price-check", headers=ADMIN, json={
        "receipt_id": api.seeded["receipt_id"],
        "current_price_cents": 34899,
        "send": True,
    })

    assert response.json()["preview"]["suggestion"] == "return_free"
    assert response.json()["email"]["attempted"] is False
    assert api.notifier.sent == []


def test_price_check_requires_a_price(api, client):
    response = client.post("/api/v1/decisions/price-check", headers=ADMIN, json={
        "receipt_id": api.seeded["receipt_id"],
    })
    assert response.status_code == 422
    assert response.json()["ok"] is False


def test_list_and_decide_deadlines(api, client):
    deadline_id = api.seeded["deadline_id"]

    listed = client.get("/api/v1/deadlines", params={"user": "user-1", "status": "open"}).json()
    assert [d["id"] for d in listed] == [deadline_id]

    url = f"/api/v1/deadlines/{deadline_id}/decision"
    kept = client.post(url, json={"user": "user-1", "action": "keep", "note": "it fits"})
    assert kept.status_code == 200
    assert kept.json()["status"] == "closed"
    assert kept.json()["decision"] == "keep"

    again = client.post(url, json={"user": "user-1", "action": "return"})
    assert again.status_code == 409
    assert again.json()["status"] == "closed"

    reopened = client.post(url, json={"user": "user-1", "action": "reopen"})
    assert reopened.json()["status"] == "open"
    assert reopened.json()["decision"] is None

    assert client.get("/api/v1/deadlines", params={"user": "user-1", "status": "closed"}).json() == []


def test_decision_for_someone_elses_deadline_is_not_found(api, client):
    response = client.post(
        f"/api/v1/deadlines/{api.seeded['deadline_id']}/decision",
        json={"user": "intruder", "action": "keep"},
    )
    assert response.status_code == 404


def test_decision_rejects_unknown_action(api, client):
    response = client.post(
        f"/api/v1/deadlines/{api.seeded['deadline_id']}/decision",
        json={"user": "user-1", "action": "burn"},
    )
    assert response.status_code == 422


def test_receipt_ingest_is_idempotent(client):
    body = {
        "user": "user-9",
        "source": "gmail",
        "receipt": {
            "merchant": "Target",
            "order_id": "TGT-77",
            "purchase_date": "2025-03-08",
            "total_cents": 4999,
        },
    }

    first = client.post("/api/v1/receipts", json=body)
    second = client.post("/api/v1/receipts", json=body)

    assert first.status_code == 201
    assert len(first.json()["deadline_ids"]) == 2
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["receipt_id"] == first.json()["receipt_id"]

    stored = client.get(f"/api/v1/receipts/{first.json()['receipt_id']}").json()
    assert stored["merchant"] == "Target"
    assert stored["source"] == "gmail"

    deadlines = client.get("/api/v1/deadlines", params={"user": "user-9"}).json()
    assert sorted(d["type"] for d in deadlines) == ["price_adjust", "return"]


def test_unknown_receipt_is_404(client):
    assert client.get("/api/v1/receipts/missing").status_code == 404


def test_google_reauthorize_and_callback(client):
    started = client.post("/api/v1/connectors/google/reauthorize", json={"user": "user-1"})
    assert started.status_code == 200
    query = parse_qs(urlparse(started.json()["url"]).query)
    assert query["access_type"] == ["offline"]
    assert query["state"] == [encode_state("user-1")]

    status = client.get("/api/v1/connectors/google/status", params={"user": "user-1"}).json()
    assert status["state"] == "reauth_required"

    finished = client.get("/api/v1/connectors/google/callback", params={
        "code": "good-code",
        "state": query["state"][0],
    })
    assert finished.status_code == 200
    assert finished.json()["status"] == "active"
    assert finished.json()["granted_scopes"] == ["openid", "email"]

    status = client.get("/api/v1/connectors/google/status", params={"user": "user-1"}).json()
    assert status["state"] == "active"

    refreshed = client.post("/api/v1/connectors/google/refresh", headers=ADMIN, json={"user": "user-1"})
    assert refreshed.status_code == 200
    assert refreshed.json()["expires_at"].startswith("2025-03-10T10:30:00")


def test_callback_rejects_bad_state(client):
    response = client.get("/api/v1/connectors/google/callback", params={"code": "good-code", "state": "!!!"})
    assert response.status_code == 400


def test_callback_with_rejected_code_needs_reauthorization(client):
    response = client.get("/api/v1/connectors/google/callback", params={
        "code": "stale-code",
        "state": encode_state("user-1"),
    })
    assert response.status_code == 409
    assert response.json()["error"] == "reauthorize_needed"


def test_refresh_without_credential_needs_reauthorization(client):
    response = client.post("/api/v1/connectors/google/refresh", headers=ADMIN, json={"user": "nobody"})

    assert response.status_code == 409
    assert response.json()["reauthorize"] == "/api/v1/connectors/google/reauthorize"


def test_reauthorize_without_client_config_keeps_credential(db_path):
    with TestClient(Api(db_path, GOOGLE_CLIENT_ID=None).app) as client:
        response = client.post("/api/v1/connectors/google/reauthorize", json={"user": "user-1"})
        status = client.get("/api/v1/connectors/google/status", params={"user": "user-1"}).json()

    assert response.status_code == 502
    assert response.json()["error"] == "upstream_error"
    assert status["state"] == "no_credential"


def test_non_ascii_admin_token_is_rejected(api, client):
    body = {"receipt_id": api.seeded["receipt_id"], "current_price_cents": 27999}

    response = client.post(
        "/api/v1/decisions/price-check",
        json=body,
        headers={"X-Admin-Token": "tökén".encode("utf-8")},
    )

    assert response.status_code == 404


def test_user_summary_counts_receipts_and_deadlines(api, client):
    client.post(
        f"/api/v1/deadlines/{api.seeded['deadline_id']}/decision",
        json={"user": "user-1", "action": "return"},
    )

    summary = client.get("/api/v1/deadlines/summary", params={"user": "user-1"})
    stranger = client.get("/api/v1/deadlines/summary", params={"user": "stranger"}).json()

    assert summary.status_code == 200
    assert summary.json() == {
        "ok": True,
        "user": "user-1",
        "receipts": 1,
        "deadlines": {"open": 0, "kept": 0, "returned": 1},
    }
    assert stranger["receipts"] == 0
    assert stranger["deadlines"] == {"open": 0, "kept": 0, "returned": 0}
    assert client.get("/api/v1/deadlines/summary").status_code == 422
