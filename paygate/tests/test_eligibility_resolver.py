from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import pytest

from paygate.app.eligibility import (
    AFRICAN_COUNTRIES,
    EligibilityContext,
    currency_for_country,
    detect_country_from_headers,
    evaluate_eligibility,
)
from paygate.app.entitlements.models import BillingInterval
from paygate.app.providers import (
    FlutterwaveAdapter,
    PaymentMethod,
    PayPalAdapter,
    PaystackAdapter,
    ProviderName,
    ProviderStatus,
    StripeAdapter,
)

_ADAPTERS = {
    ProviderName.PAYSTACK: PaystackAdapter,
    ProviderName.FLUTTERWAVE: FlutterwaveAdapter,
    ProviderName.STRIPE: StripeAdapter,
    ProviderName.PAYPAL: PayPalAdapter,
}


def make_statuses(
    enabled: Iterable[ProviderName] = tuple(ProviderName),
    allowed_countries: Optional[Dict[ProviderName, str]] = None,
) -> List[ProviderStatus]:
    enabled = set(enabled)
    statuses = []
    for provider, adapter_class in _ADAPTERS.items():
        credentials = {"secretKey": "sk", "clientId": "id", "clientSecret": "secret"}
        if allowed_countries and provider in allowed_countries:
            credentials["allowedCountries"] = allowed_countries[provider]
        statuses.append(
            ProviderStatus(
                adapter=adapter_class(credentials),
                enabled=provider in enabled,
                reason=None if provider in enabled else "Provider is not active",
            )
        )
    return statuses


def context(country: str, currency: str, interval: BillingInterval = BillingInterval.MONTHLY):
    return EligibilityContext(country_code=country, currency_code=currency, billing_interval=interval)


def test_nigeria_naira_prefers_gateway_with_native_currency():
    result = evaluate_eligibility(context("NG", "NGN"), make_statuses())

    assert result.available_providers == [ProviderName.PAYSTACK, ProviderName.FLUTTERWAVE]
    assert result.recommended_provider is ProviderName.PAYSTACK
    assert "NGN" in result.recommendation_reason

    stripe_entry = result.for_provider(ProviderName.STRIPE)
    assert stripe_entry.allowed is False
    assert stripe_entry.supports_currency is False
    assert "NGN" in stripe_entry.reason


def test_kenya_shilling_recommends_catalog_preferred_gateway():
    result = evaluate_eligibility(context("KE", "KES"), make_statuses())

    assert result.recommended_provider is ProviderName.FLUTTERWAVE


def test_local_currency_falls_back_to_other_native_gateway():
    statuses = make_statuses(enabled=[ProviderName.FLUTTERWAVE, ProviderName.STRIPE])

    result = evaluate_eligibility(context("NG", "NGN"), statuses)

    assert result.available_providers == [ProviderName.FLUTTERWAVE]
    assert result.recommended_provider is ProviderName.FLUTTERWAVE
    assert result.for_provider(ProviderName.PAYSTACK).reason == "Provider is not active"


def test_outside_africa_uses_global_fallback_order():
    result = evaluate_eligibility(context("US", "USD"), make_statuses())

    assert result.available_providers == [
        ProviderName.FLUTTERWAVE,
        ProviderName.STRIPE,
        ProviderName.PAYPAL,
    ]
    assert result.recommended_provider is ProviderName.FLUTTERWAVE


def test_trial_excludes_subscription_only_processor():
    statuses = make_statuses(enabled=[ProviderName.STRIPE, ProviderName.PAYPAL])

    result = evaluate_eligibility(context("GB", "GBP", BillingInterval.TRIAL), statuses)

    stripe_entry = result.for_provider(ProviderName.STRIPE)
    assert stripe_entry.allowed is False
    assert stripe_entry.supports_interval is False
    assert "trial" in stripe_entry.reason.lower()
    assert result.available_providers == [ProviderName.PAYPAL]
    assert result.recommended_provider is ProviderName.PAYPAL


def test_trial_with_only_card_processor_has_no_available_provider():
    statuses = make_statuses(enabled=[ProviderName.STRIPE])

    result = evaluate_eligibility(context("GB", "GBP", BillingInterval.TRIAL), statuses)

    assert result.available_providers == []
    assert result.recommended_provider is None
    assert all(entry.reason for entry in result.providers)


def test_admin_allow_list_restricts_countries():
    statuses = make_statuses(allowed_countries={ProviderName.FLUTTERWAVE: "KE,GH"})

    result = evaluate_eligibility(context("NG", "NGN"), statuses)

    flutterwave = result.for_provider(ProviderName.FLUTTERWAVE)
    assert flutterwave.allowed_by_admin is False
    assert "allow-list" in flutterwave.reason
    assert result.available_providers == [ProviderName.PAYSTACK]


def test_mobile_money_requires_african_country_and_local_currency():
    local = evaluate_eligibility(context("GH", "GHS"), make_statuses())
    dollars = evaluate_eligibility(context("GH", "USD"), make_statuses())
    abroad = evaluate_eligibility(context("GB", "GBP"), make_statuses())

    assert PaymentMethod.MOBILE_MONEY in local.for_provider(ProviderName.PAYSTACK).supported_payment_methods
    assert dollars.for_provider(ProviderName.PAYSTACK).supported_payment_methods == [PaymentMethod.CARD]
    assert abroad.for_provider(ProviderName.FLUTTERWAVE).supported_payment_methods == [PaymentMethod.CARD]
    assert abroad.for_provider(ProviderName.STRIPE).supported_payment_methods == [
        PaymentMethod.CARD,
        PaymentMethod.APPLE_PAY,
        PaymentMethod.GOOGLE_PAY,
    ]


def test_no_enabled_provider_returns_reasons_instead_of_raising():
    result = evaluate_eligibility(context("US", "USD"), make_statuses(enabled=[]))

    assert result.available_providers == []
    assert result.recommended_provider is None
    assert all(entry.reason.startswith("Provider is not active") for entry in result.providers)


@pytest.mark.parametrize("interval", list(BillingInterval))
@pytest.mark.parametrize(
    "country",
    ["NG", "GH", "KE", "ZA", "CI", "EG", "US", "GB", "DE", "FR", "BR", "IN", "JP"],
)
def test_recommended_provider_is_always_available(country, interval):
    for currency in {currency_for_country(country), "USD", "EUR", "GBP"}:
        result = evaluate_eligibility(context(country, currency, interval), make_statuses())
        if result.available_providers:
            assert result.recommended_provider in result.available_providers
        else:
            assert result.recommended_provider is None


def test_currency_for_country():
    assert currency_for_country("NG") == "NGN"
    assert currency_for_country("ZA") == "ZAR"
    assert currency_for_country("EG") == "USD"
    assert currency_for_country("de") == "EUR"
    assert currency_for_country("CH") == "EUR"
    assert currency_for_country("US") == "USD"
    assert currency_for_country("GB") == "USD"
    assert len(AFRICAN_COUNTRIES) == 54


def test_detect_country_from_headers_prefers_explicit_override():
    headers = {"cf-ipcountry": "GB", "x-checkout-country": "ng"}

    assert detect_country_from_headers(headers) == "NG"
    assert detect_country_from_headers({"cf-ipcountry": "XX1", "x-vercel-ip-country": "KE"}) == "KE"
    assert detect_country_from_headers({}, default="GH") == "GH"


def test_context_normalizes_case():
    ctx = EligibilityContext(countryCode="ng", currencyCode="ngn", billingInterval="yearly")

    assert ctx.country_code == "NG"
    assert ctx.currency_code == "NGN"
    assert ctx.billing_interval is BillingInterval.YEARLY
