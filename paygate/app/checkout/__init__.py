"""Checkout session orchestration."""

from .locks import KeyedLock
from .models import (
    CheckoutOutcome,
    CheckoutRequest,
    CheckoutSession,
    CheckoutUi,
    IdempotencyKey,
    PaymentAuditEvent,
    PaymentEventType,
    PaymentState,
)
from .repository import InMemoryCheckoutSessionRepository, PostgresCheckoutSessionRepository
from .service import (
    CheckoutSessionOrchestrator,
    CheckoutSessionRepository,
    NullPaymentEventLogger,
    PaymentEventLogger,
    resolve_return_url,
)

__all__ = [
    "KeyedLock",
    "CheckoutOutcome",
    "CheckoutRequest",
    "CheckoutSession",
    "CheckoutUi",
    "IdempotencyKey",
    "PaymentAuditEvent",
    "PaymentEventType",
    "PaymentState",
    "InMemoryCheckoutSessionRepository",
    "PostgresCheckoutSessionRepository",
    "CheckoutSessionOrchestrator",
    "CheckoutSessionRepository",
    "NullPaymentEventLogger",
    "PaymentEventLogger",
    "resolve_return_url",
]
