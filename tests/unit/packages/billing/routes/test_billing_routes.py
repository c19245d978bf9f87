"""
HTTP tests for the billing API.
"""

import json
import pytest

from packages.billing.exceptions import WebhookSignatureInvalid
from packages.billing.models.domain.payment_method import Coupon


HEADERS = {"X-Account-Id": "acct_test_1"}


@pytest.mark.asyncio
class TestPublicEndpoints:
    async def test_list_plans(self, client):
        response = await client.get("/api/v1/billing/plans")

        assert response.status_code == 200
        plans = response.json()["plans"]
        assert [p["id"] for p in plans] == ["free", "pro", "business", "enterprise"]
        enterprise = plans[-1]
        assert enterprise["limits"]["api_calls"] == -1
        assert plans[1]["price_cents"] == {"monthly": 2900, "yearly": 29000}

    async def test_payments_health(self, client, mock_payment_provider):
        response = await client.get("/api/v1/health/payments")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        mock_payment_provider.health_check.assert_awaited_once()

    async def test_account_header_required(self, client):
        response = await client.get("/api/v1/billing/usage")
        assert response.status_code == 401


@pytest.mark.asyncio
class TestWebhookEndpoint:
    async def test_acknowledges_event(self, client, stripe_event):
        event = stripe_event("customer.created", {"id": "cus_1"})

        response = await client.post(
            "/api/v1/billing/webhooks/stripe",
            content=json.dumps(event),
            headers={"stripe-signature": "t=1,v1=abc"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}

    async def test_duplicate_is_acknowledged(self, client, stripe_event):
        body = json.dumps(stripe_event("customer.created", {"id": "cus_1"}))

        first = await client.post("/api/v1/billing/webhooks/stripe", content=body)
        second = await client.post("/api/v1/billing/webhooks/stripe", content=body)

        assert first.status_code == second.status_code == 200

    async def test_bad_signature_is_400(self, client, mock_payment_provider):
        mock_payment_provider.construct_event.side_effect = WebhookSignatureInvalid()

        response = await client.post(
            "/api/v1/billing/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "forged"},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_WEBHOOK_SIGNATURE"

    async def test_invoice_before_checkout_is_503(self, client, stripe_event):
        invoice = {
            "id": "in_early",
            "object": "invoice",
            "customer": "cus_unknown",
            "subscription": "sub_unknown",
            "amount_due": 2900,
            "amount_paid": 2900,
            "currency": "usd",
        }
        body = json.dumps(stripe_event("invoice.paid", invoice))

        response = await client.post("/api/v1/billing/webhooks/stripe", content=body)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SUBSCRIPTION_NOT_RECONCILED"


@pytest.mark.asyncio
class TestUsageEndpoints:
    async def test_track_usage(self, client, pro_subscription):
        response = await client.post(
            "/api/v1/billing/usage",
            json={"resource_type": "ai_video_generation", "quantity": 3},
            headers=HEADERS,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["quantity"] == 3
        assert body["usage_record_id"] > 0

    async def test_over_quota_is_429(self, client, pro_subscription):
        response = await client.post(
            "/api/v1/billing/usage",
            json={"resource_type": "ai_video_generation", "quantity": 21},
            headers=HEADERS,
        )

        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "QUOTA_EXCEEDED"
        assert body["error"]["window"] == "monthly"
        assert body["error"]["limit"] == 20

    async def test_zero_quantity_is_422(self, client, pro_subscription):
        response = await client.post(
            "/api/v1/billing/usage",
            json={"resource_type": "api_calls", "quantity": 0},
            headers=HEADERS,
        )
        assert response.status_code == 422

    async def test_usage_without_subscription_is_404(self, client):
        response = await client.post(
            "/api/v1/billing/usage",
            json={"resource_type": "api_calls"},
            headers=HEADERS,
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NO_ACTIVE_SUBSCRIPTION"

    async def test_usage_summary(self, client, pro_subscription):
        await client.post(
            "/api/v1/billing/usage",
            json={"resource_type": "ai_video_generation", "quantity": 5},
            headers=HEADERS,
        )

        response = await client.get("/api/v1/billing/usage", headers=HEADERS)

        assert response.status_code == 200
        video = next(
            r for r in response.json()["resources"]
            if r["resource_type"] == "ai_video_generation"
        )
        assert video["used"] == 5
        assert video["percentage"] == 25.0

    async def test_check_quota_records_nothing(self, client, pro_subscription):
        response = await client.get(
            "/api/v1/billing/quota/ai_video_generation",
            params={"quantity": 21},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["allowed"] is False


@pytest.mark.asyncio
class TestSubscriptionEndpoints:
    async def test_checkout(self, client):
        response = await client.post(
            "/api/v1/billing/checkout",
            json={
                "plan_id": "pro",
                "billing_cycle": "monthly",
                "success_url": "https://app.example.com/ok",
                "cancel_url": "https://app.example.com/cancel",
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["session_id"] == "cs_test_123"

    async def test_checkout_free_plan_is_400(self, client):
        response = await client.post(
            "/api/v1/billing/checkout",
            json={
                "plan_id": "free",
                "success_url": "https://app.example.com/ok",
                "cancel_url": "https://app.example.com/cancel",
            },
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PLAN"

    async def test_subscription_is_null_without_one(self, client):
        response = await client.get("/api/v1/billing/subscription", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() is None

    async def test_update_passes_idempotency_key(
        self, client, pro_subscription, mock_payment_provider
    ):
        response = await client.patch(
            "/api/v1/billing/subscription",
            json={"plan_id": "business"},
            headers={**HEADERS, "Idempotency-Key": "req-42"},
        )

        assert response.status_code == 200
        assert response.json()["subscription"]["plan_id"] == "business"
        call = mock_payment_provider.update_subscription_price.await_args
        assert call.kwargs["idempotency_key"] == "req-42"

    async def test_cancel(self, client, pro_subscription):
        response = await client.post(
            "/api/v1/billing/subscription/cancel", headers=HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["cancel_at_period_end"] is True
        assert body["access_until"] is not None

    async def test_preview(self, client, pro_subscription):
        response = await client.post(
            "/api/v1/billing/subscription/preview",
            json={"plan_id": "business"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["new_plan_id"] == "business"

    async def test_invoices_and_overview(self, client, pro_subscription):
        invoices = await client.get(
            "/api/v1/billing/invoices", params={"limit": 10}, headers=HEADERS
        )
        overview = await client.get("/api/v1/billing/overview", headers=HEADERS)

        assert invoices.status_code == 200
        assert invoices.json() == {"invoices": [], "total": 0, "has_more": False}
        assert overview.status_code == 200
        assert overview.json()["plan"]["id"] == "pro"

    async def test_checkout_forwards_coupon(self, client, mock_payment_provider):
        mock_payment_provider.find_promotion_code.return_value = Coupon(
            code="LAUNCH20", promotion_code_id="promo_1", coupon_id="co_1"
        )

        response = await client.post(
            "/api/v1/billing/checkout",
            json={
                "plan_id": "pro",
                "success_url": "https://app.example.com/ok",
                "cancel_url": "https://app.example.com/cancel",
                "coupon_code": "LAUNCH20",
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        kwargs = mock_payment_provider.create_checkout_session.await_args.kwargs
        assert kwargs["promotion_code_id"] == "promo_1"

    async def test_unknown_coupon_is_400(self, client):
        response = await client.get(
            "/api/v1/billing/coupons/NOPE", params={"plan_id": "pro"}, headers=HEADERS
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_COUPON"

    async def test_usage_records(self, client, pro_subscription):
        await client.post(
            "/api/v1/billing/usage",
            json={"resource_type": "api_calls", "quantity": 2},
            headers=HEADERS,
        )

        response = await client.get(
            "/api/v1/billing/usage/records", params={"limit": 10}, headers=HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["limit"] == 10
        assert [r["quantity"] for r in body["records"]] == [2]


@pytest.mark.asyncio
class TestPaymentMethodEndpoints:
    async def test_list(self, client, pro_subscription):
        response = await client.get("/api/v1/billing/payment-methods", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["default_payment_method_id"] == "pm_card_visa"
        assert body["payment_methods"][0]["last4"] == "4242"

    async def test_add(self, client, pro_subscription):
        response = await client.post(
            "/api/v1/billing/payment-methods",
            json={"payment_method_id": "pm_new", "set_as_default": True},
            headers=HEADERS,
        )

        assert response.status_code == 201
        assert response.json() == {
            "id": "pm_new",
            "brand": None,
            "last4": None,
            "exp_month": None,
            "exp_year": None,
            "is_default": True,
        }

    async def test_remove(self, client, pro_subscription, mock_payment_provider):
        response = await client.delete(
            "/api/v1/billing/payment-methods/pm_card_visa", headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        mock_payment_provider.detach_payment_method.assert_awaited_once()

    async def test_remove_unknown_is_404(self, client, pro_subscription):
        response = await client.delete(
            "/api/v1/billing/payment-methods/pm_other", headers=HEADERS
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PAYMENT_METHOD_NOT_FOUND"

    async def test_without_subscription_is_404(self, client):
        response = await client.get("/api/v1/billing/payment-methods", headers=HEADERS)

        assert response.status_code == 404
