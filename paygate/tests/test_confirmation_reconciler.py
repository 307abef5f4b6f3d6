from __future__ import annotations

import hashlib
import hmac
import json
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from paygate.app.checkout import CheckoutSession, InMemoryCheckoutSessionRepository, PaymentEventType, PaymentState
from paygate.app.config import load_checkout_config
from paygate.app.entitlements.models import BillingInterval, EntitlementSubject, PlanKey, SubscriptionStatus
from paygate.app.entitlements.repository import InMemoryEntitlementRepository
from paygate.app.entitlements.service import EntitlementService
from paygate.app.errors import (
    InvalidCredentials,
    ProviderUnavailable,
    ReferenceNotFound,
    SignatureInvalid,
    ValidationError,
)
from paygate.app.providers import (
    ConfirmationResult,
    ConfirmationStatus,
    PaystackAdapter,
    ProviderName,
)
from paygate.app.reconciliation import (
    ConfirmationReconciler,
    ConfirmationTrigger,
    InMemoryWebhookEventRepository,
)

WEBHOOK_SECRET = "sk_test_webhook"


class ScriptedPaystack(PaystackAdapter):
    """Real webhook signature checks; verification answers come from ``results``."""

    def __init__(self, credentials, **kwargs):
        super().__init__(credentials, **kwargs)
        self.results = []
        self.verify_calls = 0
        self.delay = 0.0
        self._calls_lock = threading.Lock()

    def verify_transaction(self, reference):
        with self._calls_lock:
            self.verify_calls += 1
            outcome = self.results[0] if len(self.results) == 1 else self.results.pop(0)
        if self.delay:
            time.sleep(self.delay)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeRegistry:
    def __init__(self, adapter):
        self.adapter = adapter

    def get_adapter(self, provider):
        return self.adapter


class RecordingEventLogger:
    def __init__(self):
        self.events = []

    def log(self, event):
        self.events.append(event)

    def types(self):
        return [event.event_type for event in self.events]


def verified(status=ConfirmationStatus.SUCCESS, amount=1_500_000, currency="NGN", provider_status="success"):
    return ConfirmationResult(
        provider=ProviderName.PAYSTACK,
        reference="chk_ref1",
        status=status,
        verified_amount=amount,
        verified_currency=currency,
        transaction_id="991",
        provider_status=provider_status,
    )


def pending_session():
    return CheckoutSession(
        reference="chk_ref1",
        provider=ProviderName.PAYSTACK,
        plan_key=PlanKey.PRO,
        billing_interval=BillingInterval.MONTHLY,
        amount=1_500_000,
        currency="NGN",
        usd_equivalent=999,
        email="Buyer@Example.com",
        user_id=None,
        country_code="NG",
        idempotency_key="seed:pro:monthly:NG:NGN:paystack:any",
        redirect_url="https://checkout.paystack.com/xyz",
    )


@pytest.fixture
def reconcile_setup():
    config = load_checkout_config({})
    sessions = InMemoryCheckoutSessionRepository()
    sessions.insert_session(pending_session())
    adapter = ScriptedPaystack({"secretKey": WEBHOOK_SECRET})
    adapter.results = [verified()]
    entitlement_repository = InMemoryEntitlementRepository()
    events = RecordingEventLogger()
    webhook_events = InMemoryWebhookEventRepository()
    reconciler = ConfirmationReconciler(
        sessions=sessions,
        registry=FakeRegistry(adapter),
        entitlements=EntitlementService(entitlement_repository, trial_days=7),
        webhook_events=webhook_events,
        config=config,
        event_logger=events,
    )
    return reconciler, sessions, adapter, entitlement_repository, webhook_events, events


def signed_webhook(reference="chk_ref1", event_id=42):
    body = json.dumps({"event": "charge.success", "data": {"id": event_id, "reference": reference}}).encode()
    signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()
    return body, {"x-paystack-signature": signature}


def test_successful_payment_grants_entitlement_once(reconcile_setup):
    reconciler, sessions, adapter, entitlements, _, events = reconcile_setup

    first = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")
    second = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert first.ok is True
    assert first.entitlement_applied is True
    assert second.ok is True
    assert second.already_processed is True
    assert adapter.verify_calls == 1
    assert list(entitlements.grants) == ["chk_ref1"]

    entitlement = entitlements.get_entitlement(EntitlementSubject(email="buyer@example.com").key)
    assert entitlement.plan_key is PlanKey.PRO
    assert entitlement.status is SubscriptionStatus.ACTIVE
    assert entitlement.current_period_end > entitlement.current_period_start

    stored = sessions.get_by_reference("chk_ref1")
    assert stored.state is PaymentState.CONFIRMED
    assert stored.verified_amount == 1_500_000
    assert stored.transaction_id == "991"
    assert events.types() == [PaymentEventType.PAYMENT_CONFIRMED]


def test_concurrent_confirmations_apply_entitlement_once(reconcile_setup):
    reconciler, sessions, adapter, entitlements, _, _ = reconcile_setup
    adapter.delay = 0.05
    outcomes = []
    errors = []

    def worker(trigger):
        try:
            outcomes.append(reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1", trigger=trigger))
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    triggers = [ConfirmationTrigger.CLIENT_CALLBACK, ConfirmationTrigger.WEBHOOK] * 4
    threads = [threading.Thread(target=worker, args=(trigger,)) for trigger in triggers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert all(outcome.ok for outcome in outcomes)
    assert sum(outcome.entitlement_applied for outcome in outcomes) == 1
    assert adapter.verify_calls == 1
    assert len(entitlements.grants) == 1


def test_amount_mismatch_rejects_without_entitlement(reconcile_setup):
    reconciler, sessions, adapter, entitlements, _, events = reconcile_setup
    adapter.results = [verified(amount=100)]

    outcome = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert outcome.ok is False
    assert outcome.state is PaymentState.REJECTED
    assert "does not match" in outcome.reason
    assert entitlements.grants == {}
    assert sessions.get_by_reference("chk_ref1").rejection_reason == outcome.reason
    assert events.types() == [PaymentEventType.PAYMENT_REJECTED]


def test_currency_mismatch_rejects(reconcile_setup):
    reconciler, _, adapter, entitlements, _, _ = reconcile_setup
    adapter.results = [verified(currency="USD")]

    outcome = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert outcome.state is PaymentState.REJECTED
    assert "currency" in outcome.reason
    assert entitlements.grants == {}


def test_failed_payment_is_rejected_and_final(reconcile_setup):
    reconciler, _, adapter, _, _, _ = reconcile_setup
    adapter.results = [verified(status=ConfirmationStatus.FAILED, provider_status="abandoned")]

    first = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")
    second = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert first.state is PaymentState.REJECTED
    assert first.reason == "Provider reported abandoned"
    assert second.already_processed is True
    assert adapter.verify_calls == 1


def test_pending_payment_releases_claim_for_later_retry(reconcile_setup):
    reconciler, sessions, adapter, entitlements, _, _ = reconcile_setup
    adapter.results = [verified(status=ConfirmationStatus.PENDING, provider_status="ongoing"), verified()]

    pending = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert pending.state is PaymentState.INITIATED
    assert pending.status is ConfirmationStatus.PENDING
    assert sessions.get_by_reference("chk_ref1").state is PaymentState.INITIATED

    confirmed = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert confirmed.ok is True
    assert len(entitlements.grants) == 1


def test_provider_outage_releases_claim_and_propagates(reconcile_setup):
    reconciler, sessions, adapter, entitlements, _, _ = reconcile_setup
    adapter.results = [ProviderUnavailable(message="paystack timed out after 15.0s"), verified()]

    with pytest.raises(ProviderUnavailable) as exc_info:
        reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert exc_info.value.retryable is True
    assert sessions.get_by_reference("chk_ref1").state is PaymentState.INITIATED
    assert entitlements.grants == {}

    assert reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1").ok is True


def test_rejected_credentials_release_claim(reconcile_setup):
    reconciler, sessions, adapter, _, _, _ = reconcile_setup
    adapter.results = [InvalidCredentials(message="paystack rejected the configured credentials (401)")]

    with pytest.raises(InvalidCredentials):
        reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert sessions.get_by_reference("chk_ref1").state is PaymentState.INITIATED


def test_unknown_reference_and_wrong_provider(reconcile_setup):
    reconciler, _, _, _, _, _ = reconcile_setup

    with pytest.raises(ReferenceNotFound) as exc_info:
        reconciler.confirm(ProviderName.PAYSTACK, "chk_missing")
    assert exc_info.value.status_code == 404

    with pytest.raises(ValidationError):
        reconciler.confirm(ProviderName.STRIPE, "chk_ref1")


def test_claim_held_by_another_worker_is_reported_as_in_progress(reconcile_setup):
    reconciler, sessions, adapter, _, _, _ = reconcile_setup
    sessions.claim_for_verification("chk_ref1", stale_before=datetime.now(timezone.utc) - timedelta(hours=1))

    with pytest.raises(ProviderUnavailable) as exc_info:
        reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert "in progress" in exc_info.value.message
    assert adapter.verify_calls == 0


def test_stale_claim_is_taken_over(reconcile_setup):
    reconciler, sessions, adapter, entitlements, _, _ = reconcile_setup
    sessions.claim_for_verification("chk_ref1", stale_before=datetime.now(timezone.utc) - timedelta(hours=1))
    later = datetime.now(timezone.utc) + timedelta(hours=1)
    reconciler._clock = lambda: later

    outcome = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert outcome.ok is True
    assert len(entitlements.grants) == 1


def test_entitlement_survives_crash_before_state_update(reconcile_setup):
    reconciler, sessions, adapter, entitlements, _, _ = reconcile_setup
    original_finish = sessions.finish_verification
    calls = {"count": 0}

    def crash_once(reference, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("database connection lost")
        return original_finish(reference, **kwargs)

    sessions.finish_verification = crash_once
    with pytest.raises(RuntimeError):
        reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    later = datetime.now(timezone.utc) + timedelta(hours=1)
    reconciler._clock = lambda: later
    outcome = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert outcome.ok is True
    assert outcome.entitlement_applied is False
    assert len(entitlements.grants) == 1


def test_admin_retry_uses_stored_provider(reconcile_setup):
    reconciler, _, adapter, _, _, events = reconcile_setup

    outcome = reconciler.retry("chk_ref1")

    assert outcome.ok is True
    assert events.events[-1].metadata["trigger"] == "admin_retry"
    with pytest.raises(ReferenceNotFound):
        reconciler.retry("chk_missing")


def test_signed_webhook_confirms_payment(reconcile_setup):
    reconciler, sessions, _, entitlements, webhook_events, _ = reconcile_setup
    body, headers = signed_webhook()

    outcome = reconciler.handle_webhook(ProviderName.PAYSTACK, body, headers)

    assert outcome.ok is True
    assert len(entitlements.grants) == 1
    assert ("paystack", "charge.success:42") in webhook_events.events


def test_invalid_signature_changes_nothing(reconcile_setup):
    reconciler, sessions, adapter, entitlements, webhook_events, events = reconcile_setup
    body, _ = signed_webhook()

    with pytest.raises(SignatureInvalid):
        reconciler.handle_webhook(ProviderName.PAYSTACK, body, {"x-paystack-signature": "deadbeef"})

    assert adapter.verify_calls == 0
    assert sessions.get_by_reference("chk_ref1").state is PaymentState.INITIATED
    assert entitlements.grants == {}
    assert webhook_events.events == {}
    assert events.types() == [PaymentEventType.WEBHOOK_SIGNATURE_INVALID]


def test_redelivered_webhook_is_skipped(reconcile_setup):
    reconciler, _, adapter, entitlements, _, events = reconcile_setup
    body, headers = signed_webhook()

    reconciler.handle_webhook(ProviderName.PAYSTACK, body, headers)
    again = reconciler.handle_webhook(ProviderName.PAYSTACK, body, headers)

    assert again is None
    assert adapter.verify_calls == 1
    assert len(entitlements.grants) == 1
    assert events.types()[-1] is PaymentEventType.WEBHOOK_DUPLICATE


def test_pending_webhook_is_not_marked_processed(reconcile_setup):
    reconciler, _, adapter, _, webhook_events, _ = reconcile_setup
    adapter.results = [verified(status=ConfirmationStatus.PENDING, provider_status="ongoing"), verified()]
    body, headers = signed_webhook()

    first = reconciler.handle_webhook(ProviderName.PAYSTACK, body, headers)
    assert first.status is ConfirmationStatus.PENDING
    assert webhook_events.events == {}

    second = reconciler.handle_webhook(ProviderName.PAYSTACK, body, headers)
    assert second.ok is True
    assert len(webhook_events.events) == 1


def test_webhook_for_unknown_reference_is_acknowledged(reconcile_setup):
    reconciler, _, adapter, _, webhook_events, _ = reconcile_setup
    body, headers = signed_webhook(reference="chk_other", event_id=77)

    outcome = reconciler.handle_webhook(ProviderName.PAYSTACK, body, headers)

    assert outcome is None
    assert adapter.verify_calls == 0
    assert ("paystack", "charge.success:77") in webhook_events.events


class RacingSessions(InMemoryCheckoutSessionRepository):
    """Another worker finishes the reference between our lock and our claim."""

    def claim_for_verification(self, reference, *, stale_before):
        super().claim_for_verification(reference, stale_before=stale_before)
        self.finish_verification(reference, state=PaymentState.CONFIRMED, result=verified())
        return None


def test_claim_lost_to_a_finished_session_returns_stored_outcome():
    sessions = RacingSessions()
    sessions.insert_session(pending_session())
    adapter = ScriptedPaystack({"secretKey": WEBHOOK_SECRET})
    adapter.results = [verified()]
    reconciler = ConfirmationReconciler(
        sessions=sessions,
        registry=FakeRegistry(adapter),
        entitlements=EntitlementService(InMemoryEntitlementRepository(), trial_days=7),
        webhook_events=InMemoryWebhookEventRepository(),
        config=load_checkout_config({}),
    )

    outcome = reconciler.confirm(ProviderName.PAYSTACK, "chk_ref1")

    assert outcome.ok is True
    assert outcome.already_processed is True
    assert outcome.state is PaymentState.CONFIRMED
    assert adapter.verify_calls == 0


def test_client_reported_transaction_id_mismatch_is_logged(reconcile_setup, caplog):
    reconciler, sessions, _, _, _, _ = reconcile_setup

    with caplog.at_level("WARNING", logger="payments"):
        outcome = reconciler.confirm(
            ProviderName.PAYSTACK, "chk_ref1", client_transaction_id="spoofed"
        )

    assert outcome.ok is True
    assert sessions.get_by_reference("chk_ref1").transaction_id == "991"
    assert "Client reported transaction spoofed for chk_ref1 but paystack verified 991" in caplog.text
