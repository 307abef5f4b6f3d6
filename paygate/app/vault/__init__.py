"""Credential vault package: encrypted provider secrets and their settings rows."""

from .models import (
    MASKED_SECRET,
    CipherEnvelope,
    CredentialSource,
    MaskedProviderSettings,
    MigrationReport,
    ProviderRuntimeConfig,
    ProviderSettingsRecord,
)
from .repository import InMemoryProviderSettingsRepository, PostgresProviderSettingsRepository
from .service import (
    SECRET_FIELDS,
    CredentialVault,
    ProviderSettingsRepository,
    ProviderSettingsStore,
    map_env_style_keys,
)

__all__ = [
    "MASKED_SECRET",
    "SECRET_FIELDS",
    "CipherEnvelope",
    "CredentialSource",
    "CredentialVault",
    "InMemoryProviderSettingsRepository",
    "MaskedProviderSettings",
    "MigrationReport",
    "PostgresProviderSettingsRepository",
    "ProviderRuntimeConfig",
    "ProviderSettingsRecord",
    "ProviderSettingsRepository",
    "ProviderSettingsStore",
    "map_env_style_keys",
]
