"""Payment provider adapters sharing one polymorphic interface."""

from .base import IdempotencyCache, InMemoryIdempotencyCache, ProviderAdapter
from .flutterwave import FlutterwaveAdapter
from .models import (
    FALLBACK_ORDER,
    ConfirmationResult,
    ConfirmationStatus,
    CustomerDetails,
    PaymentMethod,
    ProviderCapabilities,
    ProviderName,
    ProviderSession,
    SessionRequest,
    WebhookNotification,
)
from .paypal import PayPalAdapter
from .paystack import PaystackAdapter
from .registry import (
    ADAPTER_CLASSES,
    ProviderRegistry,
    ProviderStatus,
    create_provider_adapter,
    parse_provider_name,
)
from .stripe import StripeAdapter

__all__ = [
    "ADAPTER_CLASSES",
    "FALLBACK_ORDER",
    "ConfirmationResult",
    "ConfirmationStatus",
    "CustomerDetails",
    "FlutterwaveAdapter",
    "IdempotencyCache",
    "InMemoryIdempotencyCache",
    "PayPalAdapter",
    "PaymentMethod",
    "PaystackAdapter",
    "ProviderAdapter",
    "ProviderCapabilities",
    "ProviderName",
    "ProviderRegistry",
    "ProviderSession",
    "ProviderStatus",
    "SessionRequest",
    "StripeAdapter",
    "WebhookNotification",
    "create_provider_adapter",
    "parse_provider_name",
]
