"""Models describing confirmation attempts and their outcome."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..checkout.models import PaymentState
from ..providers.models import ConfirmationStatus, ProviderName


class ConfirmationTrigger(str, Enum):
    CLIENT_CALLBACK = "client_callback"
    WEBHOOK = "webhook"
    ADMIN_RETRY = "admin_retry"


class ReconciliationOutcome(BaseModel):
    reference: str
    provider: ProviderName
    state: PaymentState
    status: Optional[ConfirmationStatus] = None
    entitlement_applied: bool = False
    already_processed: bool = False
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def ok(self) -> bool:
        return self.state is PaymentState.CONFIRMED


class WebhookEventRecord(BaseModel):
    """A processed webhook delivery, kept so redeliveries are skipped."""

    provider: ProviderName
    event_id: str
    event_type: str
    reference: Optional[str] = None
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


__all__ = ["ConfirmationTrigger", "ReconciliationOutcome", "WebhookEventRecord"]
