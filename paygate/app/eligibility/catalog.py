"""Currency and country reference data used to pick providers and prices."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from ..providers.models import ProviderName


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    symbol: str
    name: str
    minor_unit: int
    preferred_provider: ProviderName
    countries: Tuple[str, ...]


CURRENCIES: Dict[str, CurrencyInfo] = {
    "USD": CurrencyInfo("USD", "$", "US Dollar", 100, ProviderName.FLUTTERWAVE, ("US",)),
    "NGN": CurrencyInfo("NGN", "₦", "Nigerian Naira", 100, ProviderName.PAYSTACK, ("NG",)),
    "GHS": CurrencyInfo("GHS", "GH₵", "Ghanaian Cedi", 100, ProviderName.PAYSTACK, ("GH",)),
    "KES": CurrencyInfo("KES", "KSh", "Kenyan Shilling", 100, ProviderName.FLUTTERWAVE, ("KE",)),
    "ZAR": CurrencyInfo("ZAR", "R", "South African Rand", 100, ProviderName.PAYSTACK, ("ZA",)),
    "GBP": CurrencyInfo("GBP", "£", "British Pound", 100, ProviderName.FLUTTERWAVE, ("GB",)),
    "EUR": CurrencyInfo(
        "EUR",
        "€",
        "Euro",
        100,
        ProviderName.FLUTTERWAVE,
        ("DE", "FR", "IT", "ES", "NL", "BE", "AT", "IE", "PT", "FI", "GR"),
    ),
}

AFRICAN_COUNTRIES: FrozenSet[str] = frozenset(
    {
        "DZ", "AO", "BJ", "BW", "BF", "BI", "CV", "CM", "CF", "TD", "KM", "CG", "CD", "CI",
        "DJ", "EG", "GQ", "ER", "SZ", "ET", "GA", "GM", "GH", "GN", "GW", "KE", "LS", "LR",
        "LY", "MG", "MW", "ML", "MR", "MU", "MA", "MZ", "NA", "NE", "NG", "RW", "ST", "SN",
        "SC", "SL", "SO", "ZA", "SS", "SD", "TZ", "TG", "TN", "UG", "ZM", "ZW",
    }
)

EUR_COUNTRIES: FrozenSet[str] = frozenset(
    {
        "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
        "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE", "NO",
        "IS", "LI", "CH",
    }
)

# African currencies priced locally; mobile money is only offered in these.
AFRICAN_LOCAL_CURRENCIES: FrozenSet[str] = frozenset({"NGN", "GHS", "KES", "ZAR"})

COUNTRY_HEADERS = ("x-checkout-country", "x-country", "cf-ipcountry", "x-vercel-ip-country")

_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")


def normalize_country(value: Optional[str]) -> Optional[str]:
    normalized = (value or "").strip().upper()
    return normalized if _COUNTRY_CODE.match(normalized) else None


def is_african_country(country_code: str) -> bool:
    return country_code.upper() in AFRICAN_COUNTRIES


def local_currency_for_country(country_code: str) -> Optional[str]:
    upper = country_code.upper()
    for info in CURRENCIES.values():
        if upper in info.countries:
            return info.code
    return None


def currency_for_country(country_code: str) -> str:
    """Checkout currency for a buyer country: African local currency, EUR, else USD."""

    upper = country_code.upper()
    if is_african_country(upper):
        local = local_currency_for_country(upper)
        return local if local in AFRICAN_LOCAL_CURRENCIES else "USD"
    if upper in EUR_COUNTRIES:
        return "EUR"
    return "USD"


def detect_country_from_headers(headers: Mapping[str, str], default: str = "US") -> str:
    for header in COUNTRY_HEADERS:
        country = normalize_country(headers.get(header))
        if country:
            return country
    return default


def preferred_provider_for_currency(currency_code: str) -> Optional[ProviderName]:
    info = CURRENCIES.get(currency_code.upper())
    return info.preferred_provider if info else None


__all__ = [
    "AFRICAN_COUNTRIES",
    "AFRICAN_LOCAL_CURRENCIES",
    "COUNTRY_HEADERS",
    "CURRENCIES",
    "CurrencyInfo",
    "EUR_COUNTRIES",
    "currency_for_country",
    "detect_country_from_headers",
    "is_african_country",
    "local_currency_for_country",
    "normalize_country",
    "preferred_provider_for_currency",
]
