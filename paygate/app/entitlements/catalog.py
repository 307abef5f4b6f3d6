"""Static plan catalog and per-currency pricing."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping

from ..money import to_minor_units
from .models import BillingInterval, PlanKey


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a paid plan and its monthly list price in each currency (major units)."""

    key: PlanKey
    display_name: str
    monthly_prices: Mapping[str, Decimal]

    def monthly_price(self, currency: str) -> Decimal:
        try:
            return self.monthly_prices[currency.upper()]
        except KeyError as exc:
            raise KeyError(f"Plan {self.key.value} has no {currency} price") from exc


@dataclass(frozen=True)
class PriceQuote:
    """Amount to charge, in minor units, with its USD equivalent for display."""

    plan_key: PlanKey
    billing_interval: BillingInterval
    amount: int
    currency: str
    usd_equivalent: int


PLAN_CATALOG: Dict[PlanKey, PlanDefinition] = {
    PlanKey.PRO: PlanDefinition(
        key=PlanKey.PRO,
        display_name="Pro",
        monthly_prices={
            "USD": Decimal("9.99"),
            "NGN": Decimal("15000"),
            "GHS": Decimal("150"),
            "KES": Decimal("1200"),
            "ZAR": Decimal("180"),
            "GBP": Decimal("8.49"),
            "EUR": Decimal("9.49"),
        },
    ),
    PlanKey.BUSINESS: PlanDefinition(
        key=PlanKey.BUSINESS,
        display_name="Business",
        monthly_prices={
            "USD": Decimal("29.99"),
            "NGN": Decimal("45000"),
            "GHS": Decimal("450"),
            "KES": Decimal("3600"),
            "ZAR": Decimal("540"),
            "GBP": Decimal("24.99"),
            "EUR": Decimal("27.99"),
        },
    ),
}


def get_plan_definition(plan_key: PlanKey) -> PlanDefinition:
    """Return a paid plan definition, raising for the free tier or unknown keys."""

    try:
        return PLAN_CATALOG[plan_key]
    except KeyError as exc:
        raise KeyError(f"Plan is not purchasable: {plan_key}") from exc


def interval_multiplier(
    interval: BillingInterval,
    *,
    yearly_multiplier: float,
    trial_multiplier: float,
) -> Decimal:
    if interval is BillingInterval.YEARLY:
        return Decimal(str(yearly_multiplier))
    if interval is BillingInterval.TRIAL:
        return Decimal(str(trial_multiplier))
    return Decimal(1)


def quote_price(
    plan_key: PlanKey,
    interval: BillingInterval,
    currency: str,
    *,
    yearly_multiplier: float = 10.0,
    trial_multiplier: float = 0.3,
) -> PriceQuote:
    plan = get_plan_definition(plan_key)
    multiplier = interval_multiplier(
        interval,
        yearly_multiplier=yearly_multiplier,
        trial_multiplier=trial_multiplier,
    )
    currency = currency.upper()
    return PriceQuote(
        plan_key=plan_key,
        billing_interval=interval,
        amount=to_minor_units(plan.monthly_price(currency) * multiplier, currency),
        currency=currency,
        usd_equivalent=to_minor_units(plan.monthly_price("USD") * multiplier, "USD"),
    )


__all__ = ["PLAN_CATALOG", "PlanDefinition", "PriceQuote", "get_plan_definition", "quote_price"]
