"""Tests for the FastAPI binding."""

import json

import pytest
from fastapi.testclient import TestClient

from billsdk.adapters.manual_payment import SIGNATURE_HEADER, ManualPaymentAdapter, sign_payload
from billsdk.core.config import Settings
from billsdk.main import create_app
from billsdk.plugins.time_travel import TimeTravelPlugin
from tests.conftest import START, TEST_SECRET

BASE = "/api/billing"
WEBHOOK_SECRET = "whsec_api_test"


@pytest.fixture
def client(engine):
    """Create test client."""
    with TestClient(create_app(engine)) as test_client:
        yield test_client


def _csrf_headers(client: TestClient) -> dict[str, str]:
    """Fetch a token; the client keeps the cookie, the caller echoes the header."""
    response = client.get(f"{BASE}/csrf-token")
    return {"x-billsdk-csrf": response.json()["csrf_token"]}


def _signup(client: TestClient, headers: dict[str, str], plan_code: str = "pro") -> dict:
    client.post(
        f"{BASE}/customer",
        json={"external_id": "user_1", "email": "user_1@example.com"},
        headers=headers,
    )
    response = client.post(
        f"{BASE}/subscription",
        json={"customer_id": "user_1", "plan_code": plan_code},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()


# ---------------------------------------------------------------------------
# Public routes
# ---------------------------------------------------------------------------


class TestPublicRoutes:
    def test_health(self, client: TestClient):
        response = client.get(f"{BASE}/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "timestamp": START.isoformat()}

    def test_csrf_token_sets_cookie(self, client: TestClient):
        response = client.get(f"{BASE}/csrf-token")
        assert response.status_code == 200
        token = response.json()["csrf_token"]
        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"__billsdk_csrf={token}")
        assert "HttpOnly" in cookie
        assert "Secure" not in cookie

    def test_plans_readable_without_token(self, client: TestClient):
        response = client.get(f"{BASE}/plans")
        assert response.status_code == 200
        assert [p["code"] for p in response.json()] == ["free", "pro", "business"]

    def test_unknown_plan(self, client: TestClient):
        response = client.get(f"{BASE}/plan/enterprise")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PLAN_NOT_FOUND"


# ---------------------------------------------------------------------------
# CSRF protection
# ---------------------------------------------------------------------------


class TestCsrfProtection:
    def test_post_without_token_rejected(self, client: TestClient):
        response = client.post(
            f"{BASE}/customer", json={"external_id": "user_1", "email": "user_1@example.com"}
        )
        assert response.status_code == 403
        assert response.json() == {
            "error": {"code": "CSRF_TOKEN_INVALID", "message": "Missing CSRF token"}
        }

    def test_post_with_forged_token_rejected(self, client: TestClient):
        client.get(f"{BASE}/csrf-token")
        response = client.post(
            f"{BASE}/customer",
            json={"external_id": "user_1", "email": "user_1@example.com"},
            headers={"x-billsdk-csrf": "forged.token"},
        )
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "CSRF token mismatch"

    def test_untrusted_origin_rejected(self, make_engine):
        config = Settings(
            SECRET=TEST_SECRET, ENVIRONMENT="test", TRUSTED_ORIGINS="https://app.example.com"
        )
        engine = make_engine(settings=config)
        with TestClient(create_app(engine)) as client:
            headers = _csrf_headers(client)
            body = {"external_id": "user_1", "email": "user_1@example.com"}

            rejected = client.post(
                f"{BASE}/customer", json=body, headers={**headers, "origin": "https://evil.io"}
            )
            accepted = client.post(
                f"{BASE}/customer",
                json=body,
                headers={**headers, "origin": "https://app.example.com"},
            )

        assert rejected.status_code == 403
        assert rejected.json()["error"]["code"] == "ORIGIN_NOT_TRUSTED"
        assert accepted.status_code == 200


# ---------------------------------------------------------------------------
# Billing flow
# ---------------------------------------------------------------------------


class TestBillingFlow:
    def test_subscribe_and_check_features(self, client: TestClient):
        headers = _csrf_headers(client)
        created = _signup(client, headers)

        assert created["subscription"]["status"] == "active"
        assert created["payment"]["amount"] == 2000

        current = client.get(f"{BASE}/subscription", params={"customer_id": "user_1"})
        assert current.json()["subscription"]["plan_code"] == "pro"

        feature = client.get(f"{BASE}/feature/export", params={"customer_id": "user_1"})
        assert feature.json()["allowed"] is True

        features = client.get(f"{BASE}/features", params={"customer_id": "user_1"})
        assert {f["code"]: f["allowed"] for f in features.json()}["api_access"] is False

    def test_get_customer(self, client: TestClient):
        headers = _csrf_headers(client)
        _signup(client, headers, "free")

        found = client.get(f"{BASE}/customer", params={"customer_id": "user_1"})
        missing = client.get(f"{BASE}/customer", params={"customer_id": "ghost"})

        assert found.json()["external_id"] == "user_1"
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "CUSTOMER_NOT_FOUND"

    def test_no_subscription_is_null(self, client: TestClient):
        headers = _csrf_headers(client)
        client.post(
            f"{BASE}/customer",
            json={"external_id": "user_1", "email": "user_1@example.com"},
            headers=headers,
        )
        response = client.get(f"{BASE}/subscription", params={"customer_id": "user_1"})
        assert response.json() == {"subscription": None}

    def test_change_and_cancel(self, client: TestClient):
        headers = _csrf_headers(client)
        _signup(client, headers, "business")

        changed = client.post(
            f"{BASE}/subscription/change",
            json={"customer_id": "user_1", "new_plan_code": "pro"},
            headers=headers,
        )
        assert changed.json()["action"] == "scheduled"

        canceled = client.post(
            f"{BASE}/subscription/cancel",
            json={"customer_id": "user_1", "mode": "immediate"},
            headers=headers,
        )
        assert canceled.json()["status"] == "canceled"

    def test_payments_and_refund(self, client: TestClient):
        headers = _csrf_headers(client)
        created = _signup(client, headers)
        payment_id = created["payment"]["id"]

        payments = client.get(f"{BASE}/payments", params={"customer_id": "user_1"})
        assert [p["id"] for p in payments.json()] == [payment_id]

        refund = client.post(
            f"{BASE}/refund", json={"payment_id": payment_id, "amount": 500}, headers=headers
        )
        assert refund.status_code == 200
        assert refund.json()["original_payment"]["refunded_amount"] == 500

        too_much = client.post(
            f"{BASE}/refund", json={"payment_id": payment_id, "amount": 5000}, headers=headers
        )
        assert too_much.status_code == 400
        assert too_much.json()["error"]["code"] == "REFUND_FAILED"

    def test_invalid_body(self, client: TestClient):
        headers = _csrf_headers(client)
        response = client.post(
            f"{BASE}/refund", json={"payment_id": "p", "amount": 0}, headers=headers
        )
        assert response.status_code == 422

    def test_renewals(self, client: TestClient):
        headers = _csrf_headers(client)
        _signup(client, headers)
        response = client.post(f"{BASE}/renewals", json={"dry_run": True}, headers=headers)
        assert response.status_code == 200
        assert response.json()["processed"] == 0


# ---------------------------------------------------------------------------
# Webhooks and plugin endpoints
# ---------------------------------------------------------------------------


class TestWebhookRoute:
    @pytest.fixture
    def manual_client(self, make_engine):
        engine = make_engine(payment=ManualPaymentAdapter(webhook_secret=WEBHOOK_SECRET))
        with TestClient(create_app(engine)) as test_client:
            yield test_client

    def test_webhook_needs_no_csrf_token(self, manual_client: TestClient):
        headers = _csrf_headers(manual_client)
        created = _signup(manual_client, headers)
        assert created["subscription"]["status"] == "pending"
        assert created["redirect_url"]

        body = json.dumps(
            {"event_type": "payment.succeeded", "subscription_id": created["subscription"]["id"]}
        ).encode()
        response = manual_client.post(
            f"{BASE}/webhook",
            content=body,
            headers={SIGNATURE_HEADER: sign_payload(body, WEBHOOK_SECRET)},
        )

        assert response.status_code == 200
        assert response.json()["applied"] is True
        current = manual_client.get(f"{BASE}/subscription", params={"customer_id": "user_1"})
        assert current.json()["subscription"]["status"] == "active"

    def test_bad_signature(self, manual_client: TestClient):
        response = manual_client.post(
            f"{BASE}/webhook", content=b"{}", headers={SIGNATURE_HEADER: "nope"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"


class TestPluginRoutes:
    @pytest.fixture
    def tt_client(self, make_engine):
        engine = make_engine(plugins=[TimeTravelPlugin()], time_provider=None)
        with TestClient(create_app(engine)) as test_client:
            yield test_client

    def test_time_travel_endpoints(self, tt_client: TestClient):
        headers = _csrf_headers(tt_client)

        set_response = tt_client.post(
            f"{BASE}/time-travel/set", json={"date": "2025-01-15T12:00:00Z"}, headers=headers
        )
        assert set_response.json()["is_simulated"] is True

        advanced = tt_client.post(
            f"{BASE}/time-travel/advance", json={"days": 1}, headers=headers
        )
        assert advanced.json()["simulated_time"] == "2025-01-16T12:00:00+00:00"

        state = tt_client.get(f"{BASE}/time-travel/get")
        assert state.json()["is_simulated"] is True
        assert tt_client.get(f"{BASE}/health").json()["timestamp"] == "2025-01-16T12:00:00+00:00"

    def test_plugin_posts_are_csrf_protected(self, tt_client: TestClient):
        response = tt_client.post(f"{BASE}/time-travel/reset", json={})
        assert response.status_code == 403
