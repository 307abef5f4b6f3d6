"""Eligibility inputs and derived per-provider decisions."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..entitlements.models import BillingInterval
from ..providers.models import PaymentMethod, ProviderName


class EligibilityContext(BaseModel):
    """Country, currency and billing interval of a single checkout attempt."""

    country_code: str = Field(alias="countryCode", pattern=r"^[A-Za-z]{2}$")
    currency_code: str = Field(alias="currencyCode", pattern=r"^[A-Za-z]{3}$")
    billing_interval: BillingInterval = Field(alias="billingInterval", default=BillingInterval.MONTHLY)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("country_code", "currency_code")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


class ProviderEligibility(BaseModel):
    provider: ProviderName
    enabled: bool
    supports_country: bool = Field(alias="supportsCountry")
    supports_currency: bool = Field(alias="supportsCurrency")
    allowed_by_admin: bool = Field(alias="allowedByAdmin", default=True)
    supports_interval: bool = Field(alias="supportsInterval", default=True)
    allowed: bool
    reason: Optional[str] = None
    supported_countries: Optional[List[str]] = Field(alias="supportedCountries", default=None)
    supported_currencies: List[str] = Field(alias="supportedCurrencies", default_factory=list)
    supported_payment_methods: List[PaymentMethod] = Field(
        alias="supportedPaymentMethods", default_factory=list
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class EligibilityResult(BaseModel):
    """Output of the resolver for one context."""

    context: EligibilityContext
    providers: List[ProviderEligibility] = Field(default_factory=list)
    available_providers: List[ProviderName] = Field(alias="availableProviders", default_factory=list)
    recommended_provider: Optional[ProviderName] = Field(alias="recommendedProvider", default=None)
    recommendation_reason: Optional[str] = Field(alias="recommendationReason", default=None)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def for_provider(self, provider: ProviderName) -> Optional[ProviderEligibility]:
        for entry in self.providers:
            if entry.provider is provider:
                return entry
        return None

    def is_available(self, provider: ProviderName) -> bool:
        return provider in self.available_providers


__all__ = ["EligibilityContext", "EligibilityResult", "ProviderEligibility"]
