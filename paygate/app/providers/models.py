"""Value types exchanged with payment provider adapters."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class ProviderName(str, Enum):
    """Configured payment providers, in global fallback order."""

    PAYSTACK = "paystack"
    FLUTTERWAVE = "flutterwave"
    STRIPE = "stripe"
    PAYPAL = "paypal"


FALLBACK_ORDER = (
    ProviderName.PAYSTACK,
    ProviderName.FLUTTERWAVE,
    ProviderName.STRIPE,
    ProviderName.PAYPAL,
)


class PaymentMethod(str, Enum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"


class ConfirmationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static description of what a provider can process.

    ``countries`` of ``None`` means the provider accepts buyers from every country.
    """

    countries: Optional[FrozenSet[str]]
    currencies: FrozenSet[str]
    payment_methods: FrozenSet[PaymentMethod]
    supports_one_time: bool
    native_idempotency: bool

    def supports_country(self, country_code: str) -> bool:
        return self.countries is None or country_code.upper() in self.countries

    def supports_currency(self, currency_code: str) -> bool:
        return currency_code.upper() in self.currencies


class CustomerDetails(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    user_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SessionRequest(BaseModel):
    """Everything an adapter needs to open a provider checkout session."""

    reference: str = Field(min_length=1)
    amount: int = Field(gt=0, description="Amount in minor units")
    currency: str = Field(min_length=3, max_length=3)
    customer: CustomerDetails
    idempotency_key: str = Field(min_length=1)
    return_url: str
    cancel_url: str
    description: str = ""
    payment_method: Optional[PaymentMethod] = None
    recurring_interval: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class ProviderSession(BaseModel):
    """Provider response to a session request."""

    reference: str
    redirect_url: Optional[str] = None
    inline_payload: Optional[Dict[str, Any]] = None
    provider_session_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ConfirmationResult(BaseModel):
    """Authoritative transaction state reported by a provider's verification endpoint."""

    provider: ProviderName
    reference: str
    status: ConfirmationStatus
    verified_amount: Optional[int] = None
    verified_currency: Optional[str] = None
    transaction_id: Optional[str] = None
    provider_status: Optional[str] = None
    verified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @field_validator("verified_currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class WebhookNotification(BaseModel):
    """Signature-verified webhook, reduced to what reconciliation needs."""

    provider: ProviderName
    event_id: str
    event_type: str
    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


__all__ = [
    "FALLBACK_ORDER",
    "ConfirmationResult",
    "ConfirmationStatus",
    "CustomerDetails",
    "PaymentMethod",
    "ProviderCapabilities",
    "ProviderName",
    "ProviderSession",
    "SessionRequest",
    "WebhookNotification",
]
