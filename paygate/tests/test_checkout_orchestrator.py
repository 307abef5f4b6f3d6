from __future__ import annotations

import threading
import time
from typing import Dict, List, Optional

import pytest

from paygate.app.checkout import (
    CheckoutRequest,
    CheckoutSessionOrchestrator,
    CheckoutUi,
    InMemoryCheckoutSessionRepository,
    PaymentEventType,
    resolve_return_url,
)
from paygate.app.config import load_checkout_config
from paygate.app.eligibility import EligibilityResolver
from paygate.app.errors import (
    GENERIC_UNAVAILABLE_MESSAGE,
    EligibilityUnavailable,
    InvalidCredentials,
    ProviderUnavailable,
    ValidationError,
)
from paygate.app.providers import (
    FlutterwaveAdapter,
    PaymentMethod,
    PayPalAdapter,
    PaystackAdapter,
    ProviderName,
    ProviderSession,
    ProviderStatus,
    StripeAdapter,
)


class RecordingMixin:
    """Replaces the network call with a canned provider session."""

    delay = 0.0
    failure: Optional[Exception] = None

    def __init__(self, credentials, **kwargs):
        super().__init__(credentials, **kwargs)
        self.requests = []
        self._count_lock = threading.Lock()

    def create_session(self, request):
        with self._count_lock:
            self.requests.append(request)
        if self.delay:
            time.sleep(self.delay)
        if self.failure is not None:
            raise self.failure
        inline = {"provider": self.name.value, "reference": request.reference}
        return ProviderSession(
            reference=request.reference,
            redirect_url=f"https://pay.example/{self.name.value}/{request.reference}",
            inline_payload=inline if self.name is not ProviderName.STRIPE else None,
        )


class FakePaystack(RecordingMixin, PaystackAdapter):
    pass


class FakeFlutterwave(RecordingMixin, FlutterwaveAdapter):
    pass


class FakeStripe(RecordingMixin, StripeAdapter):
    pass


class FakePayPal(RecordingMixin, PayPalAdapter):
    pass


class FakeRegistry:
    def __init__(self, enabled=tuple(ProviderName)):
        credentials = {"secretKey": "sk", "clientSecret": "cs", "clientId": "id"}
        self.adapters = {
            ProviderName.PAYSTACK: FakePaystack(credentials),
            ProviderName.FLUTTERWAVE: FakeFlutterwave(credentials),
            ProviderName.STRIPE: FakeStripe(credentials),
            ProviderName.PAYPAL: FakePayPal(credentials),
        }
        self.enabled = set(enabled)

    def statuses(self) -> List[ProviderStatus]:
        return [
            ProviderStatus(
                adapter=adapter,
                enabled=name in self.enabled,
                reason=None if name in self.enabled else "Provider is not active",
            )
            for name, adapter in self.adapters.items()
        ]

    def get_adapter(self, provider):
        return self.adapters[provider]


class RecordingEventLogger:
    def __init__(self):
        self.events = []

    def log(self, event):
        self.events.append(event)

    def types(self):
        return [event.event_type for event in self.events]


@pytest.fixture
def checkout_setup():
    config = load_checkout_config({"APP_BASE_URL": "https://shop.example.com"})
    repository = InMemoryCheckoutSessionRepository()
    registry = FakeRegistry()
    events = RecordingEventLogger()
    orchestrator = CheckoutSessionOrchestrator(
        repository=repository,
        registry=registry,
        resolver=EligibilityResolver(registry),
        config=config,
        event_logger=events,
    )
    return orchestrator, repository, registry, events


def make_request(**overrides) -> CheckoutRequest:
    values: Dict[str, object] = dict(
        plan_id="pro",
        billing_interval="monthly",
        email="buyer@example.com",
        country_code="NG",
        currency_code="NGN",
        idempotency_key="client-key-1",
    )
    values.update(overrides)
    return CheckoutRequest(**values)


def test_nigerian_buyer_gets_paystack_session_in_naira(checkout_setup):
    orchestrator, repository, registry, events = checkout_setup

    outcome = orchestrator.create_checkout_session(make_request())

    session = outcome.session
    assert session.provider is ProviderName.PAYSTACK
    assert session.currency == "NGN"
    assert session.amount == 1_500_000
    assert session.usd_equivalent == 999
    assert outcome.redirect_url.startswith("https://pay.example/paystack/")
    assert outcome.inline_params is None
    assert repository.get_by_reference(session.reference) == session
    assert events.types() == [PaymentEventType.SESSION_CREATED]

    sent = registry.adapters[ProviderName.PAYSTACK].requests[0]
    assert sent.return_url == "https://shop.example.com/billing/success"
    assert sent.recurring_interval == "month"


def test_same_idempotency_key_reuses_session(checkout_setup):
    orchestrator, repository, registry, events = checkout_setup

    first = orchestrator.create_checkout_session(make_request())
    second = orchestrator.create_checkout_session(make_request())

    assert second.session.reference == first.session.reference
    assert second.reused is True
    assert len(registry.adapters[ProviderName.PAYSTACK].requests) == 1
    assert len(repository.sessions) == 1
    assert events.types()[-1] is PaymentEventType.SESSION_REUSED


def test_changed_parameters_open_a_new_session(checkout_setup):
    orchestrator, repository, registry, _ = checkout_setup

    monthly = orchestrator.create_checkout_session(make_request())
    yearly = orchestrator.create_checkout_session(make_request(billing_interval="yearly"))

    assert yearly.session.reference != monthly.session.reference
    assert yearly.session.amount == 15_000_000
    assert len(repository.sessions) == 2


def test_concurrent_requests_with_same_key_create_one_provider_session(checkout_setup):
    orchestrator, repository, registry, _ = checkout_setup
    adapter = registry.adapters[ProviderName.PAYSTACK]
    adapter.delay = 0.05
    references = []
    errors = []

    def worker():
        try:
            references.append(orchestrator.create_checkout_session(make_request()).session.reference)
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(set(references)) == 1
    assert len(adapter.requests) == 1
    assert len(repository.sessions) == 1


def test_missing_idempotency_key_generates_a_fresh_one(checkout_setup):
    orchestrator, repository, _, _ = checkout_setup

    first = orchestrator.create_checkout_session(make_request(idempotency_key=None))
    second = orchestrator.create_checkout_session(make_request(idempotency_key=None))

    assert first.session.reference != second.session.reference
    assert len(repository.sessions) == 2


def test_inline_widget_requires_authenticated_caller(checkout_setup):
    orchestrator, _, _, _ = checkout_setup

    anonymous = orchestrator.create_checkout_session(make_request(checkout_ui=CheckoutUi.INLINE))
    signed_in = orchestrator.create_checkout_session(
        make_request(checkout_ui=CheckoutUi.INLINE, idempotency_key="client-key-2"),
        user_id="42",
    )

    assert anonymous.inline_params is None
    assert anonymous.redirect_url
    assert signed_in.redirect_url is None
    assert signed_in.inline_params["provider"] == "paystack"
    assert signed_in.session.user_id == "42"


def test_ineligible_provider_is_substituted_with_reason(checkout_setup):
    orchestrator, _, registry, events = checkout_setup

    outcome = orchestrator.create_checkout_session(make_request(provider="stripe"))

    assert outcome.session.provider is ProviderName.PAYSTACK
    assert outcome.requested_provider is ProviderName.STRIPE
    assert outcome.substituted is True
    assert "stripe cannot be used" in outcome.substitution_reason
    assert "NGN" in outcome.substitution_reason
    assert registry.adapters[ProviderName.STRIPE].requests == []
    assert PaymentEventType.PROVIDER_SUBSTITUTED in events.types()


def test_eligible_requested_provider_is_honoured(checkout_setup):
    orchestrator, _, _, _ = checkout_setup

    outcome = orchestrator.create_checkout_session(make_request(provider="flutterwave"))

    assert outcome.session.provider is ProviderName.FLUTTERWAVE
    assert outcome.substituted is False


def test_no_available_provider_raises_with_reasons():
    registry = FakeRegistry(enabled=())
    orchestrator = CheckoutSessionOrchestrator(
        repository=InMemoryCheckoutSessionRepository(),
        registry=registry,
        resolver=EligibilityResolver(registry),
        config=load_checkout_config({}),
    )

    with pytest.raises(EligibilityUnavailable) as exc_info:
        orchestrator.create_checkout_session(make_request())

    details = exc_info.value.payload()["details"]["providers"]
    assert set(details) == {"paystack", "flutterwave", "stripe", "paypal"}
    assert exc_info.value.status_code == 422


def test_trial_outside_local_currency_avoids_subscription_only_processor():
    registry = FakeRegistry(enabled=[ProviderName.STRIPE, ProviderName.PAYPAL])
    orchestrator = CheckoutSessionOrchestrator(
        repository=InMemoryCheckoutSessionRepository(),
        registry=registry,
        resolver=EligibilityResolver(registry),
        config=load_checkout_config({}),
    )

    outcome = orchestrator.create_checkout_session(
        make_request(billing_interval="trial", country_code="US", currency_code="USD", provider="stripe")
    )

    assert outcome.session.provider is ProviderName.PAYPAL
    assert outcome.session.amount == 300
    assert "trial" in outcome.substitution_reason.lower()


def test_unsupported_payment_method_is_dropped(checkout_setup):
    orchestrator, _, registry, _ = checkout_setup

    outcome = orchestrator.create_checkout_session(
        make_request(country_code="US", currency_code="USD", provider="stripe", payment_method="mobile_money")
    )

    assert outcome.session.payment_method is None
    assert registry.adapters[ProviderName.STRIPE].requests[0].payment_method is None


def test_unpriced_currency_falls_back_to_country_currency(checkout_setup):
    orchestrator, _, _, _ = checkout_setup

    outcome = orchestrator.create_checkout_session(make_request(country_code="KE", currency_code="JPY"))

    assert outcome.session.currency == "KES"
    assert outcome.session.provider is ProviderName.FLUTTERWAVE


def test_country_is_detected_from_headers_when_not_supplied(checkout_setup):
    orchestrator, _, _, _ = checkout_setup

    outcome = orchestrator.create_checkout_session(
        make_request(country_code=None, currency_code=None),
        headers={"cf-ipcountry": "GH"},
    )

    assert outcome.session.country_code == "GH"
    assert outcome.session.currency == "GHS"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"plan_id": ""}, "planId is required"),
        ({"plan_id": "enterprise"}, "Invalid planId"),
        ({"plan_id": "free"}, "cannot be purchased"),
        ({"billing_interval": ""}, "billingInterval is required"),
        ({"billing_interval": "weekly"}, "Invalid billingInterval"),
        ({"email": ""}, "email is required"),
        ({"email": "not-an-email"}, "not a valid address"),
        ({"provider": "venmo"}, "Invalid provider"),
        ({"payment_method": "cheque"}, "Invalid paymentMethod"),
        ({"success_url": "javascript:alert(1)"}, "Return URLs"),
        ({"cancel_url": "//evil.example.com/cancel"}, "Return URLs"),
    ],
)
def test_invalid_input_is_rejected_before_any_provider_call(checkout_setup, overrides, message):
    orchestrator, repository, registry, _ = checkout_setup

    with pytest.raises(ValidationError) as exc_info:
        orchestrator.create_checkout_session(make_request(**overrides))

    assert message in exc_info.value.message
    assert exc_info.value.status_code == 400
    assert repository.sessions == {}
    assert all(adapter.requests == [] for adapter in registry.adapters.values())


def test_provider_failure_is_not_persisted_and_can_be_retried(checkout_setup):
    orchestrator, repository, registry, events = checkout_setup
    adapter = registry.adapters[ProviderName.PAYSTACK]
    adapter.failure = ProviderUnavailable(message="paystack returned 503: down")

    with pytest.raises(ProviderUnavailable):
        orchestrator.create_checkout_session(make_request())

    assert repository.sessions == {}
    assert PaymentEventType.PROVIDER_FAILED in events.types()

    adapter.failure = None
    outcome = orchestrator.create_checkout_session(make_request())

    assert outcome.reused is False
    assert len(repository.sessions) == 1


def test_rejected_credentials_are_audited(checkout_setup):
    orchestrator, _, registry, events = checkout_setup
    registry.adapters[ProviderName.PAYSTACK].failure = InvalidCredentials(message="paystack rejected sk")

    with pytest.raises(InvalidCredentials) as exc_info:
        orchestrator.create_checkout_session(make_request())

    assert exc_info.value.payload()["error"] == GENERIC_UNAVAILABLE_MESSAGE
    assert events.types() == [PaymentEventType.CREDENTIALS_REJECTED]


def test_unexpected_adapter_error_becomes_provider_unavailable(checkout_setup):
    orchestrator, _, registry, _ = checkout_setup
    registry.adapters[ProviderName.PAYSTACK].failure = KeyError("authorization_url")

    with pytest.raises(ProviderUnavailable) as exc_info:
        orchestrator.create_checkout_session(make_request())

    assert "KeyError" in exc_info.value.message


def test_resolve_return_url():
    base = "https://shop.example.com"

    assert resolve_return_url(None, base_url=base, default_path="/billing/success") == (
        "https://shop.example.com/billing/success"
    )
    assert resolve_return_url("/done?x=1", base_url=base + "/", default_path="/") == "https://shop.example.com/done?x=1"
    assert resolve_return_url("https://other.example.com/ok", base_url=base, default_path="/") == (
        "https://other.example.com/ok"
    )
    with pytest.raises(ValidationError):
        resolve_return_url("ftp://files.example.com", base_url=base, default_path="/")


def test_payment_method_is_passed_through_when_supported(checkout_setup):
    orchestrator, _, registry, _ = checkout_setup

    outcome = orchestrator.create_checkout_session(make_request(payment_method="mobile_money"))

    assert outcome.session.payment_method is PaymentMethod.MOBILE_MONEY
    assert registry.adapters[ProviderName.PAYSTACK].requests[0].payment_method is PaymentMethod.MOBILE_MONEY
