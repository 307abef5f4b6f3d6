"""Models for encrypted provider credentials."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

MASKED_SECRET = "•" * 16


class CipherEnvelope(BaseModel):
    """Ciphertext together with the identifier of the key that produced it."""

    version: str = Field(alias="v", min_length=1)
    ciphertext: str = Field(alias="ct", min_length=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_storage(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_storage(cls, value: Any) -> Optional["CipherEnvelope"]:
        """Return an envelope when ``value`` is a stored envelope, otherwise ``None``."""

        if not isinstance(value, Mapping):
            return None
        version = value.get("v")
        ciphertext = value.get("ct")
        if not isinstance(version, str) or not isinstance(ciphertext, str):
            return None
        if not version or not ciphertext:
            return None
        return cls(version=version, ciphertext=ciphertext)


class CredentialSource(str, Enum):
    """Where runtime credentials were loaded from."""

    STORED = "stored"
    ENVIRONMENT = "env"
    NONE = "none"


class ProviderSettingsRecord(BaseModel):
    """Persisted per-provider settings row. Secret fields hold envelopes or legacy plaintext."""

    provider: str
    is_active: bool = False
    credentials: Dict[str, Any] = Field(default_factory=dict)
    revision: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProviderRuntimeConfig(BaseModel):
    """Decrypted credentials handed to a provider adapter for a single call."""

    provider: str
    is_active: bool
    credentials: Dict[str, str] = Field(default_factory=dict)
    source: CredentialSource = CredentialSource.NONE
    decrypt_error: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def __repr__(self) -> str:
        return (
            f"ProviderRuntimeConfig(provider={self.provider!r}, is_active={self.is_active}, "
            f"source={self.source.value!r}, fields={sorted(self.credentials)!r})"
        )

    __str__ = __repr__


class MaskedProviderSettings(BaseModel):
    """Admin view of a provider row; secret values replaced by a fixed mask."""

    provider: str
    is_active: bool
    credentials: Dict[str, str] = Field(default_factory=dict)
    source: CredentialSource
    updated_at: Optional[datetime] = None
    decrypt_error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class MigrationReport(BaseModel):
    """Counts produced by a legacy plaintext migration run."""

    scanned: int = 0
    updated: int = 0
    updated_providers: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


__all__ = [
    "MASKED_SECRET",
    "CipherEnvelope",
    "CredentialSource",
    "MaskedProviderSettings",
    "MigrationReport",
    "ProviderRuntimeConfig",
    "ProviderSettingsRecord",
]
