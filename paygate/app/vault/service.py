"""Credential encryption, rotation, and provider settings storage."""
from __future__ import annotations

import base64
import hashlib
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from ..config import PROVIDER_ENV_KEYS, CheckoutConfig
from ..errors import DecryptionError, ValidationError
from .models import (
    MASKED_SECRET,
    CipherEnvelope,
    CredentialSource,
    MaskedProviderSettings,
    MigrationReport,
    ProviderRuntimeConfig,
    ProviderSettingsRecord,
)

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("payments")

SECRET_FIELDS: Dict[str, Tuple[str, ...]] = {
    "paystack": ("secretKey", "webhookSecret"),
    "flutterwave": ("clientSecret", "encryptionKey", "webhookSecretHash"),
    "stripe": ("secretKey", "webhookSecret"),
    "paypal": ("clientSecret",),
}

_MIGRATION_ATTEMPTS = 5


class ProviderSettingsRepository(Protocol):
    """Persistence operations required by the vault and the settings store."""

    def list_settings(self) -> Sequence[ProviderSettingsRecord]:
        ...

    def get_settings(self, provider: str) -> Optional[ProviderSettingsRecord]:
        ...

    def upsert_settings(
        self,
        provider: str,
        *,
        is_active: bool,
        credentials: Mapping[str, Any],
    ) -> ProviderSettingsRecord:
        ...

    def replace_credentials_if_unchanged(
        self,
        provider: str,
        *,
        expected_revision: int,
        credentials: Mapping[str, Any],
    ) -> bool:
        ...


def derive_fernet_key(raw_key: str) -> bytes:
    """Turn configured key material into a Fernet key.

    Material that is exactly 32 bytes is used as-is; anything else is hashed with SHA-256.
    """

    material = raw_key.encode("utf-8")
    if len(material) != 32:
        material = hashlib.sha256(material).digest()
    return base64.urlsafe_b64encode(material)


_KEY_ID_DOMAIN = b"paygate-key-id:"


def key_version(raw_key: str) -> str:
    """Label recorded in envelopes, derived separately from the Fernet key bytes."""

    return hashlib.sha256(_KEY_ID_DOMAIN + raw_key.encode("utf-8")).hexdigest()[:12]


def is_masked(value: str) -> bool:
    return bool(value) and set(value) == {MASKED_SECRET[0]}


class CredentialVault:
    """Encrypts secrets with the current key and decrypts with any configured key."""

    def __init__(
        self,
        keys: Sequence[str],
        *,
        repository: Optional[ProviderSettingsRepository] = None,
    ) -> None:
        self._keys: List[Tuple[str, Fernet]] = []
        for raw_key in keys:
            if not raw_key:
                continue
            version = key_version(raw_key)
            if any(existing == version for existing, _ in self._keys):
                continue
            self._keys.append((version, Fernet(derive_fernet_key(raw_key))))
        self._repository = repository

    @classmethod
    def from_config(
        cls,
        config: CheckoutConfig,
        *,
        repository: Optional[ProviderSettingsRepository] = None,
    ) -> "CredentialVault":
        return cls(config.encryption_keys, repository=repository)

    @property
    def configured(self) -> bool:
        return bool(self._keys)

    @property
    def current_version(self) -> Optional[str]:
        return self._keys[0][0] if self._keys else None

    def encrypt(self, plaintext: str) -> CipherEnvelope:
        if not self._keys:
            raise DecryptionError(
                message="No credentials encryption key is configured",
                code="encryption_key_missing",
            )
        version, fernet = self._keys[0]
        token = fernet.encrypt(plaintext.encode("utf-8"))
        return CipherEnvelope(version=version, ciphertext=token.decode("ascii"))

    def decrypt(self, envelope: CipherEnvelope) -> str:
        """Decrypt with the recorded key first, then every other configured key."""

        candidates = [fernet for version, fernet in self._keys if version == envelope.version]
        candidates.extend(fernet for version, fernet in self._keys if version != envelope.version)
        if not candidates:
            raise DecryptionError(
                message="No credentials encryption key is configured",
                code="encryption_key_missing",
            )
        try:
            plaintext = MultiFernet(candidates).decrypt(envelope.ciphertext.encode("ascii"))
            return plaintext.decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise DecryptionError(
                message=f"Ciphertext (key version {envelope.version}) did not decrypt with any configured key",
            ) from exc

    def reveal(self, stored_value: Any) -> Optional[str]:
        """Return the plaintext for a stored field, accepting legacy plaintext strings."""

        envelope = CipherEnvelope.from_storage(stored_value)
        if envelope is not None:
            return self.decrypt(envelope)
        if isinstance(stored_value, str):
            return stored_value
        return None

    def migrate_legacy_plaintext(self) -> MigrationReport:
        """Encrypt plaintext secret fields in every stored provider row.

        Rows are rewritten with a revision check so a concurrent save is never overwritten;
        a lost race re-reads the row and tries again. Envelopes are left untouched.
        """

        if self._repository is None:
            raise RuntimeError("CredentialVault has no settings repository to migrate")
        if not self._keys:
            raise DecryptionError(
                message="No credentials encryption key is configured",
                code="encryption_key_missing",
            )

        records = self._repository.list_settings()
        updated_providers: List[str] = []
        for record in records:
            if self._migrate_record(record):
                updated_providers.append(record.provider)

        report = MigrationReport(
            scanned=len(records),
            updated=len(updated_providers),
            updated_providers=updated_providers,
        )
        audit_logger.info(
            "credentials_migrated scanned=%s updated=%s",
            report.scanned,
            report.updated,
            extra={"payment_event": "credentials_migrated", "providers": updated_providers},
        )
        return report

    def _migrate_record(self, record: ProviderSettingsRecord) -> bool:
        current: Optional[ProviderSettingsRecord] = record
        for _ in range(_MIGRATION_ATTEMPTS):
            if current is None:
                return False
            credentials, changed = self.encrypt_plaintext_fields(current.provider, current.credentials)
            if not changed:
                return False
            if self._repository.replace_credentials_if_unchanged(
                current.provider,
                expected_revision=current.revision,
                credentials=credentials,
            ):
                return True
            current = self._repository.get_settings(record.provider)
        logger.warning("Gave up migrating provider %s after concurrent updates", record.provider)
        return False

    def encrypt_plaintext_fields(
        self,
        provider: str,
        credentials: Mapping[str, Any],
    ) -> Tuple[Dict[str, Any], bool]:
        result = dict(credentials)
        changed = False
        for field_name in SECRET_FIELDS.get(provider, ()):
            value = result.get(field_name)
            if isinstance(value, str) and value.strip():
                result[field_name] = self.encrypt(value.strip()).to_storage()
                changed = True
        return result, changed


class ProviderSettingsStore:
    """Reads and writes provider credential bundles through the vault."""

    def __init__(
        self,
        repository: ProviderSettingsRepository,
        vault: CredentialVault,
        config: CheckoutConfig,
    ) -> None:
        self._repository = repository
        self._vault = vault
        self._config = config

    @property
    def vault(self) -> CredentialVault:
        return self._vault

    @property
    def providers(self) -> Tuple[str, ...]:
        return tuple(SECRET_FIELDS)

    def _require_known(self, provider: str) -> str:
        normalized = (provider or "").strip().lower()
        if normalized not in SECRET_FIELDS:
            raise ValidationError(message=f"Unknown payment provider: {provider}")
        return normalized

    def get_runtime_config(self, provider: str) -> ProviderRuntimeConfig:
        """Decrypted credentials for ``provider``.

        A row that fails to decrypt yields an inactive config carrying ``decrypt_error``.
        """

        provider = self._require_known(provider)
        env_credentials = self._config.env_credentials(provider)
        record = self._repository.get_settings(provider)
        if record is None:
            return ProviderRuntimeConfig(
                provider=provider,
                is_active=bool(env_credentials),
                credentials=env_credentials,
                source=CredentialSource.ENVIRONMENT if env_credentials else CredentialSource.NONE,
            )

        credentials = dict(env_credentials)
        decrypt_error: Optional[str] = None
        secret_fields = SECRET_FIELDS[provider]
        for field_name, stored_value in record.credentials.items():
            if field_name in secret_fields:
                try:
                    revealed = self._vault.reveal(stored_value)
                except DecryptionError as exc:
                    logger.error(
                        "Unable to decrypt %s for provider %s: %s",
                        field_name,
                        provider,
                        exc.code,
                    )
                    decrypt_error = f"Unable to decrypt {field_name}"
                    credentials.pop(field_name, None)
                    continue
                if revealed:
                    credentials[field_name] = revealed
            elif stored_value is not None and str(stored_value).strip():
                credentials[field_name] = str(stored_value).strip()

        return ProviderRuntimeConfig(
            provider=provider,
            is_active=record.is_active and decrypt_error is None,
            credentials=credentials,
            source=CredentialSource.STORED,
            decrypt_error=decrypt_error,
        )

    def list_for_admin(self) -> List[MaskedProviderSettings]:
        stored = {record.provider: record for record in self._repository.list_settings()}
        result: List[MaskedProviderSettings] = []
        for provider in self.providers:
            runtime = self.get_runtime_config(provider)
            record = stored.get(provider)
            result.append(
                MaskedProviderSettings(
                    provider=provider,
                    is_active=record.is_active if record else runtime.is_active,
                    credentials=self._mask(provider, runtime.credentials, record),
                    source=runtime.source,
                    updated_at=record.updated_at if record else None,
                    decrypt_error=runtime.decrypt_error,
                )
            )
        return result

    def _mask(
        self,
        provider: str,
        credentials: Mapping[str, str],
        record: Optional[ProviderSettingsRecord],
    ) -> Dict[str, str]:
        masked: Dict[str, str] = {}
        secret_fields = SECRET_FIELDS[provider]
        for field_name, value in credentials.items():
            masked[field_name] = MASKED_SECRET if field_name in secret_fields and value else value
        if record is not None:
            # Undecryptable secrets still show as configured.
            for field_name in secret_fields:
                if record.credentials.get(field_name) and field_name not in masked:
                    masked[field_name] = MASKED_SECRET
        return masked

    def save(
        self,
        provider: str,
        *,
        is_active: bool,
        credentials: Mapping[str, Optional[str]],
    ) -> MaskedProviderSettings:
        """Merge ``credentials`` into the stored row.

        Masked or empty secret values keep the stored secret. New secrets are encrypted and
        any legacy plaintext secret still in the row is encrypted on the way through.
        """

        provider = self._require_known(provider)
        existing = self._repository.get_settings(provider)
        merged: Dict[str, Any] = dict(existing.credentials) if existing else {}
        secret_fields = SECRET_FIELDS[provider]

        for field_name, raw_value in credentials.items():
            value = (raw_value or "").strip()
            if field_name in secret_fields:
                if not value or is_masked(value):
                    continue
                merged[field_name] = self._vault.encrypt(value).to_storage()
            elif value:
                merged[field_name] = value
            else:
                merged.pop(field_name, None)

        merged, _ = self._vault.encrypt_plaintext_fields(provider, merged)
        record = self._repository.upsert_settings(provider, is_active=is_active, credentials=merged)
        logger.info(
            "Saved payment settings for %s active=%s fields=%s",
            provider,
            record.is_active,
            sorted(record.credentials),
        )
        runtime = self.get_runtime_config(provider)
        return MaskedProviderSettings(
            provider=provider,
            is_active=record.is_active,
            credentials=self._mask(provider, runtime.credentials, record),
            source=runtime.source,
            updated_at=record.updated_at,
            decrypt_error=runtime.decrypt_error,
        )

    def import_env_style(self, values: Mapping[str, Optional[str]]) -> List[MaskedProviderSettings]:
        """Save ``STRIPE_SECRET_KEY``-style keys onto the matching provider bundles."""

        grouped = map_env_style_keys(values)
        saved: List[MaskedProviderSettings] = []
        for provider, credentials in grouped.items():
            existing = self._repository.get_settings(provider)
            is_active = existing.is_active if existing else True
            saved.append(self.save(provider, is_active=is_active, credentials=credentials))
        return saved


def map_env_style_keys(values: Mapping[str, Optional[str]]) -> Dict[str, Dict[str, str]]:
    lookup = {
        env_key: (provider, field_name)
        for provider, keys in PROVIDER_ENV_KEYS.items()
        for field_name, env_key in keys.items()
    }
    grouped: Dict[str, Dict[str, str]] = {}
    for key, raw_value in values.items():
        target = lookup.get(key.strip().upper())
        value = (raw_value or "").strip()
        if target is None or not value:
            continue
        provider, field_name = target
        grouped.setdefault(provider, {})[field_name] = value
    return grouped


__all__ = [
    "SECRET_FIELDS",
    "CredentialVault",
    "ProviderSettingsRepository",
    "ProviderSettingsStore",
    "derive_fernet_key",
    "is_masked",
    "key_version",
    "map_env_style_keys",
]
