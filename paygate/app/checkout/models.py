"""Domain models for checkout sessions and their confirmation state."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import BillingInterval, PlanKey
from ..providers.models import ConfirmationStatus, PaymentMethod, ProviderName


class CheckoutUi(str, Enum):
    INLINE = "inline"
    REDIRECT = "redirect"


class PaymentState(str, Enum):
    """Confirmation lifecycle of a checkout reference."""

    INITIATED = "initiated"
    VERIFYING = "verifying"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentState.CONFIRMED, PaymentState.REJECTED)


class PaymentEventType(str, Enum):
    SESSION_CREATED = "checkout.session_created"
    SESSION_REUSED = "checkout.session_reused"
    PROVIDER_SUBSTITUTED = "checkout.provider_substituted"
    PROVIDER_FAILED = "checkout.provider_failed"
    CREDENTIALS_REJECTED = "checkout.credentials_rejected"
    PAYMENT_CONFIRMED = "confirmation.confirmed"
    PAYMENT_REJECTED = "confirmation.rejected"
    PAYMENT_PENDING = "confirmation.pending"
    WEBHOOK_SIGNATURE_INVALID = "webhook.signature_invalid"
    WEBHOOK_DUPLICATE = "webhook.duplicate"


@dataclass(frozen=True)
class IdempotencyKey:
    """Seed plus every checkout parameter whose change must produce a new session.

    Two keys are equal only when the seed and all parameters are equal.
    """

    seed: str
    plan_key: PlanKey
    billing_interval: BillingInterval
    country_code: str
    currency_code: str
    provider: ProviderName
    payment_method: Optional[PaymentMethod] = None

    @property
    def value(self) -> str:
        return ":".join(
            (
                self.seed,
                self.plan_key.value,
                self.billing_interval.value,
                self.country_code.upper(),
                self.currency_code.upper(),
                self.provider.value,
                self.payment_method.value if self.payment_method else "any",
            )
        )

    def reference(self) -> str:
        """Deterministic checkout reference for providers that accept ours."""

        digest = hashlib.sha256(self.value.encode("utf-8")).hexdigest()
        return f"chk_{digest[:32]}"

    def __str__(self) -> str:
        return self.value


class CheckoutRequest(BaseModel):
    """Caller-supplied checkout input. Validated by the orchestrator before use."""

    plan_id: str = ""
    billing_interval: str = ""
    email: str = ""
    provider: Optional[str] = None
    payment_method: Optional[str] = None
    idempotency_key: Optional[str] = None
    country_code: Optional[str] = None
    currency_code: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    checkout_ui: CheckoutUi = CheckoutUi.REDIRECT
    customer_name: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CheckoutSession(BaseModel):
    """Persisted checkout session. Checkout fields never change after creation."""

    reference: str
    provider: ProviderName
    plan_key: PlanKey
    billing_interval: BillingInterval
    amount: int = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    usd_equivalent: Optional[int] = None
    email: str
    user_id: Optional[str] = None
    country_code: str
    payment_method: Optional[PaymentMethod] = None
    idempotency_key: str
    redirect_url: Optional[str] = None
    inline_params: Optional[Dict[str, Any]] = None
    provider_session_id: Optional[str] = None
    state: PaymentState = PaymentState.INITIATED
    confirmation_status: Optional[ConfirmationStatus] = None
    verified_amount: Optional[int] = None
    verified_currency: Optional[str] = None
    transaction_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    verified_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutOutcome(BaseModel):
    """What the caller receives: exactly one of ``redirect_url`` or ``inline_params``."""

    session: CheckoutSession
    redirect_url: Optional[str] = None
    inline_params: Optional[Dict[str, Any]] = None
    requested_provider: Optional[ProviderName] = None
    substitution_reason: Optional[str] = None
    reused: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def substituted(self) -> bool:
        return self.substitution_reason is not None


class PaymentAuditEvent(BaseModel):
    event_type: PaymentEventType
    reference: Optional[str] = None
    provider: Optional[ProviderName] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


__all__ = [
    "CheckoutOutcome",
    "CheckoutRequest",
    "CheckoutSession",
    "CheckoutUi",
    "IdempotencyKey",
    "PaymentAuditEvent",
    "PaymentEventType",
    "PaymentState",
]
