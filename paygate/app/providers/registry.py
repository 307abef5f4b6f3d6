"""Builds provider adapters from stored or caller-supplied credentials."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Type

import httpx

from ..config import CheckoutConfig
from ..errors import ValidationError
from ..vault import ProviderSettingsStore
from .base import IdempotencyCache, InMemoryIdempotencyCache, ProviderAdapter
from .flutterwave import FlutterwaveAdapter
from .models import FALLBACK_ORDER, ProviderName
from .paypal import PayPalAdapter
from .paystack import PaystackAdapter
from .stripe import StripeAdapter

ADAPTER_CLASSES: Dict[ProviderName, Type[ProviderAdapter]] = {
    ProviderName.PAYSTACK: PaystackAdapter,
    ProviderName.FLUTTERWAVE: FlutterwaveAdapter,
    ProviderName.STRIPE: StripeAdapter,
    ProviderName.PAYPAL: PayPalAdapter,
}


def parse_provider_name(value: str) -> ProviderName:
    try:
        return ProviderName((value or "").strip().lower())
    except ValueError as exc:
        raise ValidationError(message=f"Unknown payment provider: {value}") from exc


def create_provider_adapter(
    provider: ProviderName,
    credentials: Mapping[str, str],
    *,
    config: CheckoutConfig,
    idempotency_cache: Optional[IdempotencyCache] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> ProviderAdapter:
    adapter_class = ADAPTER_CLASSES[provider]
    return adapter_class(
        credentials,
        timeout=config.provider_timeout_seconds,
        test_mode=config.test_mode,
        idempotency_cache=idempotency_cache,
        transport=transport,
    )


@dataclass(frozen=True)
class ProviderStatus:
    """Enablement of one provider, with the reason when it is disabled."""

    adapter: ProviderAdapter
    enabled: bool
    reason: Optional[str] = None

    @property
    def name(self) -> ProviderName:
        return self.adapter.name


class ProviderRegistry:
    """Resolves adapters for configured providers."""

    def __init__(
        self,
        settings_store: ProviderSettingsStore,
        config: CheckoutConfig,
        *,
        idempotency_cache: Optional[IdempotencyCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings_store = settings_store
        self._config = config
        self._idempotency_cache = idempotency_cache or InMemoryIdempotencyCache()
        self._transport = transport

    def build(self, provider: ProviderName, credentials: Mapping[str, str]) -> ProviderAdapter:
        """Adapter over transient credentials, e.g. keys an admin has not saved yet."""

        return create_provider_adapter(
            provider,
            credentials,
            config=self._config,
            idempotency_cache=self._idempotency_cache,
            transport=self._transport,
        )

    def status(self, provider: ProviderName) -> ProviderStatus:
        runtime = self._settings_store.get_runtime_config(provider.value)
        adapter = self.build(provider, runtime.credentials)
        if runtime.decrypt_error:
            return ProviderStatus(adapter=adapter, enabled=False, reason=runtime.decrypt_error)
        if not runtime.is_active:
            return ProviderStatus(adapter=adapter, enabled=False, reason="Provider is not active")
        missing = adapter.missing_credentials()
        if missing:
            return ProviderStatus(
                adapter=adapter,
                enabled=False,
                reason=f"Missing credentials: {', '.join(missing)}",
            )
        return ProviderStatus(adapter=adapter, enabled=True)

    def statuses(self) -> List[ProviderStatus]:
        return [self.status(provider) for provider in FALLBACK_ORDER]

    def get_adapter(self, provider: ProviderName) -> ProviderAdapter:
        return self.status(provider).adapter


__all__ = [
    "ADAPTER_CLASSES",
    "ProviderRegistry",
    "ProviderStatus",
    "create_provider_adapter",
    "parse_provider_name",
]
