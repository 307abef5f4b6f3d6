"""Checkout configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple
import os

# Environment fallbacks per provider: credential field -> environment variable.
PROVIDER_ENV_KEYS: Dict[str, Dict[str, str]] = {
    "paystack": {
        "secretKey": "PAYSTACK_SECRET_KEY",
        "publicKey": "PAYSTACK_PUBLIC_KEY",
        "webhookSecret": "PAYSTACK_WEBHOOK_SECRET",
        "allowedCountries": "PAYSTACK_ALLOWED_COUNTRIES",
    },
    "flutterwave": {
        "clientId": "FLUTTERWAVE_CLIENT_ID",
        "clientSecret": "FLUTTERWAVE_CLIENT_SECRET",
        "publicKey": "FLUTTERWAVE_PUBLIC_KEY",
        "encryptionKey": "FLUTTERWAVE_ENCRYPTION_KEY",
        "webhookSecretHash": "FLUTTERWAVE_WEBHOOK_SECRET_HASH",
        "allowedCountries": "FLUTTERWAVE_ALLOWED_COUNTRIES",
    },
    "stripe": {
        "secretKey": "STRIPE_SECRET_KEY",
        "publicKey": "STRIPE_PUBLIC_KEY",
        "webhookSecret": "STRIPE_WEBHOOK_SECRET",
        "allowedCountries": "STRIPE_ALLOWED_COUNTRIES",
    },
    "paypal": {
        "clientId": "PAYPAL_CLIENT_ID",
        "clientSecret": "PAYPAL_CLIENT_SECRET",
        "webhookId": "PAYPAL_WEBHOOK_ID",
        "allowedCountries": "PAYPAL_ALLOWED_COUNTRIES",
    },
}


@dataclass(frozen=True)
class CheckoutConfig:
    """Configuration for the checkout core."""

    encryption_keys: Tuple[str, ...]
    provider_timeout_seconds: float
    idempotency_wait_seconds: float
    confirmation_lock_wait_seconds: float
    confirmation_stale_after_seconds: float
    trial_days: int
    trial_multiplier: float
    yearly_multiplier: float
    test_mode: bool
    app_base_url: str
    default_country: str
    storage_backend: str
    provider_env: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def current_encryption_key(self) -> Optional[str]:
        return self.encryption_keys[0] if self.encryption_keys else None

    @property
    def legacy_encryption_keys(self) -> Tuple[str, ...]:
        return self.encryption_keys[1:]

    def env_credentials(self, provider: str) -> Dict[str, str]:
        return dict(self.provider_env.get(provider, {}))


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _split_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _collect_encryption_keys(env_mapping: Mapping[str, str]) -> Tuple[str, ...]:
    candidates = _split_list(env_mapping.get("CREDENTIALS_ENCRYPTION_KEYS"))
    if not candidates:
        primary = (env_mapping.get("CREDENTIALS_ENCRYPTION_KEY") or "").strip()
        if primary:
            candidates.append(primary)
    candidates.extend(_split_list(env_mapping.get("CREDENTIALS_ENCRYPTION_KEYS_LEGACY")))
    old = (env_mapping.get("CREDENTIALS_ENCRYPTION_KEY_OLD") or "").strip()
    if old:
        candidates.append(old)

    ordered: list[str] = []
    for candidate in candidates:
        if candidate not in ordered:
            ordered.append(candidate)
    return tuple(ordered)


def _collect_provider_env(env_mapping: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
    collected: Dict[str, Dict[str, str]] = {}
    for provider, keys in PROVIDER_ENV_KEYS.items():
        values = {
            field_name: env_mapping[env_key].strip()
            for field_name, env_key in keys.items()
            if (env_mapping.get(env_key) or "").strip()
        }
        if values:
            collected[provider] = values
    return collected


def load_checkout_config(env: Optional[Mapping[str, str]] = None) -> CheckoutConfig:
    """Load :class:`CheckoutConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    trial_days = min(31, max(1, _to_int(env_mapping.get("PAID_TRIAL_DAYS"), default=7)))
    trial_multiplier = min(1.0, max(0.05, _to_float(env_mapping.get("PAID_TRIAL_MULTIPLIER"), default=0.3)))
    yearly_multiplier = max(1.0, _to_float(env_mapping.get("YEARLY_PRICE_MULTIPLIER"), default=10.0))

    app_env = (env_mapping.get("APP_ENV") or "development").strip().lower()
    test_mode = _to_bool(env_mapping.get("PAYMENTS_TEST_MODE"), default=app_env != "production")

    default_country = (env_mapping.get("DEFAULT_CHECKOUT_COUNTRY") or "US").strip().upper()
    if len(default_country) != 2 or not default_country.isalpha():
        default_country = "US"

    return CheckoutConfig(
        encryption_keys=_collect_encryption_keys(env_mapping),
        provider_timeout_seconds=max(1.0, _to_float(env_mapping.get("PAYMENT_PROVIDER_TIMEOUT"), default=15.0)),
        idempotency_wait_seconds=max(0.1, _to_float(env_mapping.get("CHECKOUT_IDEMPOTENCY_WAIT"), default=10.0)),
        confirmation_lock_wait_seconds=max(0.1, _to_float(env_mapping.get("CONFIRMATION_LOCK_WAIT"), default=30.0)),
        confirmation_stale_after_seconds=max(1.0, _to_float(env_mapping.get("CONFIRMATION_STALE_AFTER"), default=120.0)),
        trial_days=trial_days,
        trial_multiplier=trial_multiplier,
        yearly_multiplier=yearly_multiplier,
        test_mode=test_mode,
        app_base_url=(env_mapping.get("APP_BASE_URL") or "http://localhost:3000").rstrip("/"),
        default_country=default_country,
        storage_backend=(env_mapping.get("PAYGATE_STORAGE") or "postgres").strip().lower(),
        provider_env=_collect_provider_env(env_mapping),
    )


__all__ = ["CheckoutConfig", "PROVIDER_ENV_KEYS", "load_checkout_config"]
