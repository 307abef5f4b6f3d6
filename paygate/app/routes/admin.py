"""Administrator routes for provider credentials and payment recovery."""
from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from ..errors import InvalidCredentials, PaymentError
from ..providers import parse_provider_name
from ..schemas.payments import (
    ConfirmResponse,
    EnvImportRequest,
    MigrationResponse,
    ProviderSettingsListResponse,
    ProviderSettingsUpdate,
    ProviderSettingsView,
    TestConnectionRequest,
    TestConnectionResponse,
)
from ..services.payments import get_confirmation_reconciler, get_provider_registry, get_settings_store
from ..vault import SECRET_FIELDS
from ..vault.service import is_masked
from .dependencies import require_admin

logger = logging.getLogger("payments")

router = APIRouter(prefix="/api/admin/payment-settings", tags=["admin"])
payments_router = APIRouter(prefix="/api/admin/payments", tags=["admin"])


@router.get("", response_model=ProviderSettingsListResponse)
def list_payment_settings(*, admin=Depends(require_admin)) -> ProviderSettingsListResponse:
    store = get_settings_store()
    return ProviderSettingsListResponse(
        providers=[ProviderSettingsView.from_settings(item) for item in store.list_for_admin()]
    )


@router.put("/{provider}", response_model=ProviderSettingsView)
def save_payment_settings(
    provider: str,
    payload: ProviderSettingsUpdate,
    *,
    admin=Depends(require_admin),
) -> ProviderSettingsView:
    store = get_settings_store()
    saved = store.save(provider, is_active=payload.is_active, credentials=payload.credentials)
    logger.info("Admin %s saved payment settings for %s", getattr(admin, "id", None), saved.provider)
    return ProviderSettingsView.from_settings(saved)


@router.post("/import-env", response_model=ProviderSettingsListResponse)
def import_env_settings(
    payload: EnvImportRequest,
    *,
    admin=Depends(require_admin),
) -> ProviderSettingsListResponse:
    store = get_settings_store()
    saved = store.import_env_style(payload.values)
    return ProviderSettingsListResponse(providers=[ProviderSettingsView.from_settings(item) for item in saved])


@router.post("/test", response_model=TestConnectionResponse)
def test_payment_settings(
    payload: TestConnectionRequest,
    *,
    admin=Depends(require_admin),
) -> TestConnectionResponse:
    """Run a connection test against unsaved credentials, filling gaps from stored ones."""

    provider = parse_provider_name(payload.provider)
    credentials: Dict[str, str] = {}
    if payload.use_stored:
        credentials.update(get_settings_store().get_runtime_config(provider.value).credentials)
    secret_fields = SECRET_FIELDS[provider.value]
    for field_name, raw_value in payload.credentials.items():
        value = (raw_value or "").strip()
        if not value or (field_name in secret_fields and is_masked(value)):
            continue
        credentials[field_name] = value

    adapter = get_provider_registry().build(provider, credentials)
    missing = adapter.missing_credentials()
    if missing:
        return TestConnectionResponse(
            ok=False,
            provider=provider,
            error=f"Missing credentials: {', '.join(missing)}",
            code="missing_credentials",
        )
    try:
        adapter.test_connection()
    except InvalidCredentials as exc:
        logger.warning("Connection test for %s rejected credentials", provider.value)
        return TestConnectionResponse(ok=False, provider=provider, error=exc.message, code=exc.code)
    except PaymentError as exc:
        return TestConnectionResponse(ok=False, provider=provider, error=exc.message, code=exc.code)
    return TestConnectionResponse(ok=True, provider=provider)


@router.post("/migrate", response_model=MigrationResponse)
def migrate_payment_settings(*, admin=Depends(require_admin)) -> MigrationResponse:
    report = get_settings_store().vault.migrate_legacy_plaintext()
    return MigrationResponse.from_report(report)


@payments_router.post("/{reference}/reconcile", response_model=ConfirmResponse)
def retry_reconciliation(reference: str, *, admin=Depends(require_admin)) -> ConfirmResponse:
    outcome = get_confirmation_reconciler().retry(reference)
    return ConfirmResponse.from_outcome(outcome)


__all__ = [
    "router",
    "payments_router",
    "import_env_settings",
    "list_payment_settings",
    "migrate_payment_settings",
    "retry_reconciliation",
    "save_payment_settings",
    "test_payment_settings",
]
