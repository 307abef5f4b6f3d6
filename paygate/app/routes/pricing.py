"""Localized plan prices for the pricing page."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request

from ..eligibility import (
    CURRENCIES,
    EligibilityContext,
    currency_for_country,
    detect_country_from_headers,
    normalize_country,
)
from ..entitlements.catalog import PLAN_CATALOG, quote_price
from ..entitlements.models import BillingInterval
from ..money import format_display
from ..schemas.payments import CurrencyView, PlanPrice, PricingResponse
from ..services.payments import get_checkout_config, get_eligibility_resolver

router = APIRouter(prefix="/api", tags=["pricing"])


def _pricing_currency(requested: Optional[str], country_code: str) -> str:
    currency = (requested or "").strip().upper()
    if currency and all(currency in plan.monthly_prices for plan in PLAN_CATALOG.values()):
        return currency
    return currency_for_country(country_code)


@router.get("/pricing", response_model=PricingResponse)
def get_pricing(
    request: Request,
    country: Optional[str] = Query(default=None),
    currency: Optional[str] = Query(default=None),
    interval: BillingInterval = Query(default=BillingInterval.MONTHLY),
) -> PricingResponse:
    config = get_checkout_config()
    country_code = normalize_country(country) or detect_country_from_headers(
        request.headers, default=config.default_country
    )
    currency_code = _pricing_currency(currency, country_code)
    info = CURRENCIES[currency_code]
    usd_symbol = CURRENCIES["USD"].symbol

    plans = []
    for plan in PLAN_CATALOG.values():
        quote = quote_price(
            plan.key,
            interval,
            currency_code,
            yearly_multiplier=config.yearly_multiplier,
            trial_multiplier=config.trial_multiplier,
        )
        plans.append(
            PlanPrice(
                plan_id=plan.key.value,
                name=plan.display_name,
                amount=quote.amount,
                formatted=format_display(quote.amount, currency_code, info.symbol),
                usd_equivalent=quote.usd_equivalent,
                formatted_usd=format_display(quote.usd_equivalent, "USD", usd_symbol),
            )
        )

    eligibility = get_eligibility_resolver().resolve(
        EligibilityContext(country_code=country_code, currency_code=currency_code, billing_interval=interval)
    )
    return PricingResponse(
        country=country_code,
        currency=CurrencyView(code=info.code, symbol=info.symbol, name=info.name),
        billing_interval=interval.value,
        plans=plans,
        available_providers=eligibility.available_providers,
        recommended_provider=eligibility.recommended_provider,
    )


__all__ = ["router", "get_pricing"]
