"""Domain models for plans, billing intervals and subscription entitlements."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PlanKey(str, Enum):
    """Canonical identifiers for subscription plans."""

    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


class BillingInterval(str, Enum):
    """Supported billing frequencies. ``trial`` is a one-off paid trial."""

    MONTHLY = "monthly"
    YEARLY = "yearly"
    TRIAL = "trial"

    @property
    def recurring_interval(self) -> Optional[str]:
        if self is BillingInterval.MONTHLY:
            return "month"
        if self is BillingInterval.YEARLY:
            return "year"
        return None


class SubscriptionStatus(str, Enum):
    """Lifecycle state for subscriptions."""

    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class EntitlementSubject(BaseModel):
    """Who receives the entitlement: a signed-in user, or a pending email for guest checkouts."""

    user_id: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else None

    @model_validator(mode="after")
    def _require_identity(self) -> "EntitlementSubject":
        if not self.user_id and not self.email:
            raise ValueError("user_id or email is required")
        return self

    @property
    def key(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}"
        return f"email:{self.email}"


class Entitlement(BaseModel):
    """Current subscription tier and expiry for a subject."""

    subject_key: str
    plan_key: PlanKey
    billing_interval: BillingInterval
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    source_reference: str
    provider: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status in {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING}


class EntitlementGrant(BaseModel):
    """Record that a payment reference has been turned into an entitlement change."""

    reference: str
    subject_key: str
    plan_key: PlanKey
    billing_interval: BillingInterval
    provider: str
    amount: int
    currency: str
    granted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


__all__ = [
    "BillingInterval",
    "Entitlement",
    "EntitlementGrant",
    "EntitlementSubject",
    "PlanKey",
    "SubscriptionStatus",
]
