"""API schemas for checkout, confirmation and payment administration."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..checkout import CheckoutOutcome, CheckoutRequest, CheckoutUi, PaymentState
from ..eligibility import EligibilityResult, ProviderEligibility
from ..providers.models import ConfirmationStatus, ProviderName
from ..reconciliation import ReconciliationOutcome
from ..vault import CredentialSource, MaskedProviderSettings, MigrationReport


class CreateSessionRequest(BaseModel):
    plan_id: str = Field(alias="planId", default="")
    billing_interval: str = Field(alias="billingInterval", default="")
    provider: Optional[str] = None
    payment_method: Optional[str] = Field(alias="paymentMethod", default=None)
    email: str = ""
    name: Optional[str] = None
    idempotency_key: Optional[str] = Field(alias="idempotencyKey", default=None)
    country_code: Optional[str] = Field(alias="countryCode", default=None)
    currency_code: Optional[str] = Field(alias="currencyCode", default=None)
    success_url: Optional[str] = Field(alias="successUrl", default=None)
    cancel_url: Optional[str] = Field(alias="cancelUrl", default=None)
    checkout_ui: CheckoutUi = Field(alias="checkoutUi", default=CheckoutUi.REDIRECT)

    model_config = ConfigDict(populate_by_name=True)

    def to_request(self) -> CheckoutRequest:
        return CheckoutRequest(
            plan_id=self.plan_id,
            billing_interval=self.billing_interval,
            email=self.email,
            provider=self.provider,
            payment_method=self.payment_method,
            idempotency_key=self.idempotency_key,
            country_code=self.country_code,
            currency_code=self.currency_code,
            success_url=self.success_url,
            cancel_url=self.cancel_url,
            checkout_ui=self.checkout_ui,
            customer_name=self.name,
        )


class CreateSessionResponse(BaseModel):
    """``url`` for redirect checkout, ``inline`` for widget checkout."""

    reference: str
    provider: ProviderName
    amount: int
    currency: str
    usd_equivalent: Optional[int] = Field(alias="usdEquivalent", default=None)
    url: Optional[str] = None
    inline: Optional[Dict[str, Any]] = None
    substituted_from: Optional[ProviderName] = Field(alias="substitutedFrom", default=None)
    substitution_reason: Optional[str] = Field(alias="substitutionReason", default=None)
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: CheckoutOutcome) -> "CreateSessionResponse":
        session = outcome.session
        return cls(
            reference=session.reference,
            provider=session.provider,
            amount=session.amount,
            currency=session.currency,
            usd_equivalent=session.usd_equivalent,
            url=outcome.redirect_url,
            inline=outcome.inline_params,
            substituted_from=outcome.requested_provider if outcome.substituted else None,
            substitution_reason=outcome.substitution_reason,
            created_at=session.created_at,
        )


class ConfirmRequest(BaseModel):
    """``token`` is what PayPal appends to the return URL (its order id)."""

    provider: str
    reference: str = Field(min_length=1, validation_alias=AliasChoices("reference", "token"))
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class ConfirmResponse(BaseModel):
    ok: bool
    reference: str
    state: PaymentState
    status: Optional[ConfirmationStatus] = None
    already_processed: bool = Field(alias="alreadyProcessed", default=False)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: ReconciliationOutcome) -> "ConfirmResponse":
        return cls(
            ok=outcome.ok,
            reference=outcome.reference,
            state=outcome.state,
            status=outcome.status,
            already_processed=outcome.already_processed,
        )


class GatewayCapability(BaseModel):
    provider: ProviderName
    enabled: bool
    supported_countries: Optional[List[str]] = Field(alias="supportedCountries", default=None)
    supported_currencies: List[str] = Field(alias="supportedCurrencies", default_factory=list)
    supported_payment_methods: List[str] = Field(alias="supportedPaymentMethods", default_factory=list)
    eligibility: ProviderEligibility

    model_config = ConfigDict(populate_by_name=True)


class GatewayCapabilitiesResponse(BaseModel):
    country: str
    currency: str
    billing_interval: str = Field(alias="billingInterval")
    providers: List[GatewayCapability]
    available_providers: List[ProviderName] = Field(alias="availableProviders")
    recommended_provider: Optional[ProviderName] = Field(alias="recommendedProvider", default=None)
    recommendation_reason: Optional[str] = Field(alias="recommendationReason", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: EligibilityResult) -> "GatewayCapabilitiesResponse":
        return cls(
            country=result.context.country_code,
            currency=result.context.currency_code,
            billing_interval=result.context.billing_interval.value,
            providers=[
                GatewayCapability(
                    provider=entry.provider,
                    enabled=entry.enabled,
                    supported_countries=entry.supported_countries,
                    supported_currencies=entry.supported_currencies,
                    supported_payment_methods=[method.value for method in entry.supported_payment_methods],
                    eligibility=entry,
                )
                for entry in result.providers
            ],
            available_providers=result.available_providers,
            recommended_provider=result.recommended_provider,
            recommendation_reason=result.recommendation_reason,
        )


class CurrencyView(BaseModel):
    code: str
    symbol: str
    name: str


class PlanPrice(BaseModel):
    """Amounts are minor units; ``formatted`` fields are ready to display."""

    plan_id: str = Field(alias="planId")
    name: str
    amount: int
    formatted: str
    usd_equivalent: int = Field(alias="usdEquivalent")
    formatted_usd: str = Field(alias="formattedUsd")

    model_config = ConfigDict(populate_by_name=True)


class PricingResponse(BaseModel):
    country: str
    currency: CurrencyView
    billing_interval: str = Field(alias="billingInterval")
    plans: List[PlanPrice]
    available_providers: List[ProviderName] = Field(alias="availableProviders")
    recommended_provider: Optional[ProviderName] = Field(alias="recommendedProvider", default=None)

    model_config = ConfigDict(populate_by_name=True)


class TestConnectionRequest(BaseModel):
    provider: str
    credentials: Dict[str, Optional[str]] = Field(default_factory=dict)
    use_stored: bool = Field(alias="useStored", default=True)

    model_config = ConfigDict(populate_by_name=True)


class TestConnectionResponse(BaseModel):
    ok: bool
    provider: ProviderName
    error: Optional[str] = None
    code: Optional[str] = None


class MigrationResponse(BaseModel):
    scanned: int
    updated: int
    updated_providers: List[str] = Field(alias="updatedProviders", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_report(cls, report: MigrationReport) -> "MigrationResponse":
        return cls(
            scanned=report.scanned,
            updated=report.updated,
            updated_providers=list(report.updated_providers),
        )


class ProviderSettingsUpdate(BaseModel):
    is_active: bool = Field(alias="isActive", default=False)
    credentials: Dict[str, Optional[str]] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class ProviderSettingsView(BaseModel):
    provider: str
    is_active: bool = Field(alias="isActive")
    credentials: Dict[str, str]
    source: CredentialSource
    updated_at: Optional[datetime] = Field(alias="updatedAt", default=None)
    decrypt_error: Optional[str] = Field(alias="decryptError", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_settings(cls, settings: MaskedProviderSettings) -> "ProviderSettingsView":
        return cls(
            provider=settings.provider,
            is_active=settings.is_active,
            credentials=dict(settings.credentials),
            source=settings.source,
            updated_at=settings.updated_at,
            decrypt_error=settings.decrypt_error,
        )


class ProviderSettingsListResponse(BaseModel):
    providers: List[ProviderSettingsView]


class EnvImportRequest(BaseModel):
    values: Dict[str, Optional[str]]


__all__ = [
    "ConfirmRequest",
    "ConfirmResponse",
    "CreateSessionRequest",
    "CreateSessionResponse",
    "CurrencyView",
    "EnvImportRequest",
    "GatewayCapabilitiesResponse",
    "GatewayCapability",
    "MigrationResponse",
    "PlanPrice",
    "PricingResponse",
    "ProviderSettingsListResponse",
    "ProviderSettingsUpdate",
    "ProviderSettingsView",
    "TestConnectionRequest",
    "TestConnectionResponse",
]
