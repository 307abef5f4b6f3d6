"""Decides which providers and payment methods a buyer may use."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from ..entitlements.models import BillingInterval
from ..providers.base import ProviderAdapter
from ..providers.models import FALLBACK_ORDER, PaymentMethod, ProviderName
from ..providers.registry import ProviderRegistry, ProviderStatus
from .catalog import (
    AFRICAN_LOCAL_CURRENCIES,
    is_african_country,
    local_currency_for_country,
    preferred_provider_for_currency,
)
from .models import EligibilityContext, EligibilityResult, ProviderEligibility


def supported_payment_methods(
    adapter: ProviderAdapter, context: EligibilityContext
) -> List[PaymentMethod]:
    """Base method set of ``adapter`` narrowed to what the country and currency allow."""

    methods = set(adapter.supported_payment_methods())
    mobile_money_ok = (
        is_african_country(context.country_code)
        and context.currency_code in AFRICAN_LOCAL_CURRENCIES
    )
    if not mobile_money_ok:
        methods.discard(PaymentMethod.MOBILE_MONEY)
    return [method for method in PaymentMethod if method in methods]


def _evaluate(status: ProviderStatus, context: EligibilityContext) -> ProviderEligibility:
    adapter = status.adapter
    capabilities = adapter.capabilities
    supports_country = capabilities.supports_country(context.country_code)
    supports_currency = capabilities.supports_currency(context.currency_code)
    allow_list = adapter.allowed_countries()
    allowed_by_admin = allow_list is None or context.country_code in allow_list
    supports_interval = (
        context.billing_interval is not BillingInterval.TRIAL or capabilities.supports_one_time
    )

    reasons: List[str] = []
    if not status.enabled:
        reasons.append(status.reason or "Provider is not configured")
    if not supports_country:
        reasons.append(f"Does not support buyers in {context.country_code}")
    if not supports_currency:
        reasons.append(f"Does not support {context.currency_code}")
    if not allowed_by_admin:
        reasons.append(f"{context.country_code} is not in the configured country allow-list")
    if not supports_interval:
        reasons.append("Only subscriptions are supported, so the one-time trial charge is unavailable")

    countries = adapter.supported_countries()
    return ProviderEligibility(
        provider=adapter.name,
        enabled=status.enabled,
        supports_country=supports_country,
        supports_currency=supports_currency,
        allowed_by_admin=allowed_by_admin,
        supports_interval=supports_interval,
        allowed=not reasons,
        reason="; ".join(reasons) or None,
        supported_countries=sorted(countries) if countries is not None else None,
        supported_currencies=sorted(adapter.supported_currencies()),
        supported_payment_methods=supported_payment_methods(adapter, context),
    )


def _recommend(
    context: EligibilityContext,
    eligibility: Sequence[ProviderEligibility],
) -> Tuple[Optional[ProviderName], Optional[str]]:
    available = [entry for entry in eligibility if entry.allowed]
    if not available:
        return None, None

    local_currency = local_currency_for_country(context.country_code)
    if (
        local_currency == context.currency_code
        and local_currency in AFRICAN_LOCAL_CURRENCIES
    ):
        preferred = preferred_provider_for_currency(local_currency)
        native = [entry.provider for entry in available if local_currency in entry.supported_currencies]
        if preferred in native:
            return preferred, f"{preferred.value} is the preferred gateway for {local_currency}"
        if native:
            return native[0], f"{native[0].value} processes {local_currency} natively"

    ordered = sorted(available, key=lambda entry: FALLBACK_ORDER.index(entry.provider))
    first = ordered[0].provider
    return first, f"{first.value} is the first available provider"


def evaluate_eligibility(
    context: EligibilityContext, statuses: Iterable[ProviderStatus]
) -> EligibilityResult:
    """Pure decision over already-resolved provider statuses."""

    eligibility = sorted(
        (_evaluate(status, context) for status in statuses),
        key=lambda entry: FALLBACK_ORDER.index(entry.provider),
    )
    recommended, reason = _recommend(context, eligibility)
    return EligibilityResult(
        context=context,
        providers=eligibility,
        available_providers=[entry.provider for entry in eligibility if entry.allowed],
        recommended_provider=recommended,
        recommendation_reason=reason,
    )


class EligibilityResolver:
    """Reads current provider enablement from the registry and evaluates a context."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def resolve(self, context: EligibilityContext) -> EligibilityResult:
        return evaluate_eligibility(context, self._registry.statuses())


__all__ = ["EligibilityResolver", "evaluate_eligibility", "supported_payment_methods"]
