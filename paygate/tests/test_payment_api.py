from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import paygate.main as paygate_main
from paygate.app.checkout import PaymentState
from paygate.app.errors import (
    GENERIC_UNAVAILABLE_MESSAGE,
    EligibilityUnavailable,
    ProviderUnavailable,
    SignatureInvalid,
)
from paygate.app.providers import ConfirmationStatus, ProviderName
from paygate.app.reconciliation import ReconciliationOutcome
from paygate.app.routes import admin as admin_routes
from paygate.app.routes import checkout as checkout_routes
from paygate.app.routes import webhooks as webhook_routes


@pytest.fixture
def client():
    return TestClient(paygate_main.app)


def bearer(role="user", subject="42"):
    token = paygate_main.create_access_token(subject=subject, email="buyer@example.com", role=role)
    return {"Authorization": f"Bearer {token}"}


class RaisingOrchestrator:
    def __init__(self, error):
        self.error = error

    def create_checkout_session(self, request, *, user_id=None, headers=None):
        raise self.error


def test_no_eligible_provider_returns_structured_error(client, monkeypatch):
    error = EligibilityUnavailable(
        message="No payment provider is available for this checkout",
        detail={"providers": {"stripe": "Does not support NGN"}},
    )
    monkeypatch.setattr(checkout_routes, "get_checkout_orchestrator", lambda: RaisingOrchestrator(error))

    response = client.post(
        "/api/checkout/create-session",
        json={"planId": "pro", "billingInterval": "monthly", "email": "buyer@example.com"},
    )

    assert response.status_code == 422
    assert response.json() == {
        "error": "No payment method is available for your country and currency.",
        "details": {"providers": {"stripe": "Does not support NGN"}},
    }


def test_provider_outage_hides_internal_message_from_buyers(client, monkeypatch):
    error = ProviderUnavailable(message="paystack returned 503: maintenance window")
    monkeypatch.setattr(checkout_routes, "get_checkout_orchestrator", lambda: RaisingOrchestrator(error))

    response = client.post(
        "/api/checkout/create-session",
        json={"planId": "pro", "billingInterval": "monthly", "email": "buyer@example.com"},
    )

    assert response.status_code == 503
    assert response.json() == {"error": GENERIC_UNAVAILABLE_MESSAGE, "retryable": True}


def test_admin_routes_require_admin_role(client):
    assert client.get("/api/admin/payment-settings").status_code == 401
    assert client.get("/api/admin/payment-settings", headers=bearer()).status_code == 403


def test_admin_errors_include_operator_message(client, monkeypatch):
    class FailingReconciler:
        def retry(self, reference):
            raise ProviderUnavailable(message="paystack returned 503: maintenance window")

    monkeypatch.setattr(admin_routes, "get_confirmation_reconciler", lambda: FailingReconciler())

    response = client.post("/api/admin/payments/chk_1/reconcile", headers=bearer(role="admin"))

    assert response.status_code == 503
    assert response.json()["error"] == "paystack returned 503: maintenance window"


def test_confirm_rejected_payment_over_http(client, monkeypatch):
    class RejectingReconciler:
        def confirm(self, provider, reference, *, trigger, client_transaction_id=None):
            return ReconciliationOutcome(
                reference=reference,
                provider=provider,
                state=PaymentState.REJECTED,
                status=ConfirmationStatus.FAILED,
            )

    monkeypatch.setattr(checkout_routes, "get_confirmation_reconciler", lambda: RejectingReconciler())

    response = client.post("/api/checkout/confirm", json={"provider": "paystack", "reference": "chk_9"})

    assert response.status_code == 402
    assert response.json() == {"error": "Payment could not be verified", "reference": "chk_9"}


class RecordingWebhookReconciler:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome
        self.error = error
        self.calls = []

    def handle_webhook(self, provider, body, headers):
        self.calls.append((provider, body, headers))
        if self.error is not None:
            raise self.error
        return self.outcome


def test_webhook_passes_raw_body_and_acknowledges(client, monkeypatch):
    reconciler = RecordingWebhookReconciler(
        outcome=ReconciliationOutcome(
            reference="chk_1",
            provider=ProviderName.PAYSTACK,
            state=PaymentState.CONFIRMED,
            status=ConfirmationStatus.SUCCESS,
            entitlement_applied=True,
        )
    )
    monkeypatch.setattr(webhook_routes, "get_confirmation_reconciler", lambda: reconciler)
    raw = b'{"event":"charge.success","data":{"reference":"chk_1"}}'

    response = client.post(
        "/api/webhooks/paystack",
        content=raw,
        headers={"X-Paystack-Signature": "abc", "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "reference": "chk_1", "state": "confirmed"}
    provider, body, headers = reconciler.calls[0]
    assert provider is ProviderName.PAYSTACK
    assert body == raw
    assert headers["x-paystack-signature"] == "abc"


def test_webhook_with_bad_signature_is_rejected(client, monkeypatch):
    reconciler = RecordingWebhookReconciler(error=SignatureInvalid(message="Paystack webhook signature mismatch"))
    monkeypatch.setattr(webhook_routes, "get_confirmation_reconciler", lambda: reconciler)

    response = client.post("/api/webhooks/paystack", content=b"{}")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature"}


def test_webhook_for_unknown_provider_is_rejected(client, monkeypatch):
    reconciler = RecordingWebhookReconciler()
    monkeypatch.setattr(webhook_routes, "get_confirmation_reconciler", lambda: reconciler)

    response = client.post("/api/webhooks/venmo", content=b"{}")

    assert response.status_code == 400
    assert reconciler.calls == []


def test_webhook_outage_asks_provider_to_redeliver(client, monkeypatch):
    reconciler = RecordingWebhookReconciler(error=ProviderUnavailable(message="paystack timed out after 15.0s"))
    monkeypatch.setattr(webhook_routes, "get_confirmation_reconciler", lambda: reconciler)

    response = client.post("/api/webhooks/paystack", content=b"{}")

    assert response.status_code == 503


def test_current_user_endpoint_accepts_bearer_token(client):
    response = client.get("/api/auth/me", headers=bearer(role="admin", subject="7"))

    assert response.status_code == 200
    assert response.json() == {"id": "7", "email": "buyer@example.com", "role": "admin"}


def test_healthz_reports_configured_context(client):
    response = client.get("/api/healthz")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
