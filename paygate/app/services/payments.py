"""Application wiring for the checkout core."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..checkout import (
    CheckoutSessionOrchestrator,
    InMemoryCheckoutSessionRepository,
    PaymentAuditEvent,
    PaymentEventLogger,
    PostgresCheckoutSessionRepository,
)
from ..config import CheckoutConfig, load_checkout_config
from ..eligibility import EligibilityResolver
from ..entitlements import (
    EntitlementService,
    InMemoryEntitlementRepository,
    PostgresEntitlementRepository,
)
from ..providers import InMemoryIdempotencyCache, ProviderRegistry
from ..reconciliation import (
    ConfirmationReconciler,
    InMemoryWebhookEventRepository,
    PostgresWebhookEventRepository,
)
from ..vault import (
    CredentialVault,
    InMemoryProviderSettingsRepository,
    PostgresProviderSettingsRepository,
    ProviderSettingsStore,
)

logger = logging.getLogger("payments")


class LoggingPaymentEventLogger(PaymentEventLogger):
    """Forwards payment audit events to the application logger."""

    def log(self, event: PaymentAuditEvent) -> None:
        logger.info(
            "Payment event %s reference=%s provider=%s metadata=%s",
            event.event_type.value,
            event.reference,
            event.provider.value if event.provider else None,
            event.metadata,
        )


def _uses_memory(config: CheckoutConfig) -> bool:
    return config.storage_backend == "memory"


@lru_cache(maxsize=1)
def get_checkout_config() -> CheckoutConfig:
    return load_checkout_config()


@lru_cache(maxsize=1)
def get_settings_store() -> ProviderSettingsStore:
    config = get_checkout_config()
    if _uses_memory(config):
        repository = InMemoryProviderSettingsRepository()
    else:
        repository = PostgresProviderSettingsRepository()
    vault = CredentialVault.from_config(config, repository=repository)
    if not vault.configured:
        logger.warning("No credential encryption key configured; provider secrets cannot be saved")
    return ProviderSettingsStore(repository=repository, vault=vault, config=config)


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    return ProviderRegistry(
        get_settings_store(),
        get_checkout_config(),
        idempotency_cache=InMemoryIdempotencyCache(),
    )


@lru_cache(maxsize=1)
def get_eligibility_resolver() -> EligibilityResolver:
    return EligibilityResolver(get_provider_registry())


@lru_cache(maxsize=1)
def get_session_repository():
    if _uses_memory(get_checkout_config()):
        return InMemoryCheckoutSessionRepository()
    return PostgresCheckoutSessionRepository()


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    config = get_checkout_config()
    if _uses_memory(config):
        repository = InMemoryEntitlementRepository()
    else:
        repository = PostgresEntitlementRepository()
    return EntitlementService(repository, trial_days=config.trial_days)


@lru_cache(maxsize=1)
def get_checkout_orchestrator() -> CheckoutSessionOrchestrator:
    return CheckoutSessionOrchestrator(
        repository=get_session_repository(),
        registry=get_provider_registry(),
        resolver=get_eligibility_resolver(),
        config=get_checkout_config(),
        event_logger=LoggingPaymentEventLogger(),
    )


@lru_cache(maxsize=1)
def get_confirmation_reconciler() -> ConfirmationReconciler:
    config = get_checkout_config()
    webhook_events = (
        InMemoryWebhookEventRepository() if _uses_memory(config) else PostgresWebhookEventRepository()
    )
    return ConfirmationReconciler(
        sessions=get_session_repository(),
        registry=get_provider_registry(),
        entitlements=get_entitlement_service(),
        webhook_events=webhook_events,
        config=config,
        event_logger=LoggingPaymentEventLogger(),
    )


__all__ = [
    "LoggingPaymentEventLogger",
    "get_checkout_config",
    "get_checkout_orchestrator",
    "get_confirmation_reconciler",
    "get_eligibility_resolver",
    "get_entitlement_service",
    "get_provider_registry",
    "get_session_repository",
    "get_settings_store",
]
