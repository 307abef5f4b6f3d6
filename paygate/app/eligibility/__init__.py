"""Provider eligibility per country, currency and billing interval."""

from .catalog import (
    AFRICAN_COUNTRIES,
    AFRICAN_LOCAL_CURRENCIES,
    CURRENCIES,
    EUR_COUNTRIES,
    CurrencyInfo,
    currency_for_country,
    detect_country_from_headers,
    normalize_country,
)
from .models import EligibilityContext, EligibilityResult, ProviderEligibility
from .service import EligibilityResolver, evaluate_eligibility, supported_payment_methods

__all__ = [
    "AFRICAN_COUNTRIES",
    "AFRICAN_LOCAL_CURRENCIES",
    "CURRENCIES",
    "EUR_COUNTRIES",
    "CurrencyInfo",
    "currency_for_country",
    "detect_country_from_headers",
    "normalize_country",
    "EligibilityContext",
    "EligibilityResult",
    "ProviderEligibility",
    "EligibilityResolver",
    "evaluate_eligibility",
    "supported_payment_methods",
]
