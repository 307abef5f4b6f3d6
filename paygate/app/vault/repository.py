"""Persistence for provider settings rows."""
from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

import psycopg2.extras

from ..db import PostgresRepository
from .models import ProviderSettingsRecord


def _row_to_settings(row: dict) -> ProviderSettingsRecord:
    return ProviderSettingsRecord(
        provider=row["provider"],
        is_active=bool(row["is_active"]),
        credentials=row.get("credentials") or {},
        revision=int(row.get("revision") or 0),
        updated_at=row["updated_at"],
    )


class PostgresProviderSettingsRepository(PostgresRepository):
    """Stores one row per provider in ``payment_provider_settings``."""

    def list_settings(self) -> Sequence[ProviderSettingsRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT provider, is_active, credentials, revision, updated_at
                FROM payment_provider_settings
                ORDER BY provider
                """
            )
            rows = cursor.fetchall() or []
            return [_row_to_settings(row) for row in rows]

    def get_settings(self, provider: str) -> Optional[ProviderSettingsRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT provider, is_active, credentials, revision, updated_at
                FROM payment_provider_settings
                WHERE provider = %s
                LIMIT 1
                """,
                (provider,),
            )
            row = cursor.fetchone()
            return _row_to_settings(row) if row else None

    def upsert_settings(
        self,
        provider: str,
        *,
        is_active: bool,
        credentials: Mapping[str, Any],
    ) -> ProviderSettingsRecord:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO payment_provider_settings (provider, is_active, credentials, revision)
                VALUES (%(provider)s, %(is_active)s, %(credentials)s, 1)
                ON CONFLICT (provider) DO UPDATE SET
                    is_active = EXCLUDED.is_active,
                    credentials = EXCLUDED.credentials,
                    revision = payment_provider_settings.revision + 1,
                    updated_at = NOW()
                RETURNING provider, is_active, credentials, revision, updated_at
                """,
                {
                    "provider": provider,
                    "is_active": is_active,
                    "credentials": psycopg2.extras.Json(dict(credentials)),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist provider settings")
            return _row_to_settings(row)

    def replace_credentials_if_unchanged(
        self,
        provider: str,
        *,
        expected_revision: int,
        credentials: Mapping[str, Any],
    ) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE payment_provider_settings
                SET credentials = %s,
                    revision = revision + 1,
                    updated_at = NOW()
                WHERE provider = %s AND revision = %s
                """,
                (psycopg2.extras.Json(dict(credentials)), provider, expected_revision),
            )
            return cursor.rowcount > 0


class InMemoryProviderSettingsRepository:
    """Thread-safe repository used for local development and tests."""

    def __init__(self) -> None:
        self._rows: Dict[str, ProviderSettingsRecord] = {}
        self._lock = threading.Lock()

    def list_settings(self) -> Sequence[ProviderSettingsRecord]:
        with self._lock:
            return [self._rows[key].model_copy(deep=True) for key in sorted(self._rows)]

    def get_settings(self, provider: str) -> Optional[ProviderSettingsRecord]:
        with self._lock:
            record = self._rows.get(provider)
            return record.model_copy(deep=True) if record else None

    def upsert_settings(
        self,
        provider: str,
        *,
        is_active: bool,
        credentials: Mapping[str, Any],
    ) -> ProviderSettingsRecord:
        with self._lock:
            existing = self._rows.get(provider)
            record = ProviderSettingsRecord(
                provider=provider,
                is_active=is_active,
                credentials=copy.deepcopy(dict(credentials)),
                revision=(existing.revision + 1) if existing else 1,
                updated_at=datetime.now(timezone.utc),
            )
            self._rows[provider] = record
            return record.model_copy(deep=True)

    def replace_credentials_if_unchanged(
        self,
        provider: str,
        *,
        expected_revision: int,
        credentials: Mapping[str, Any],
    ) -> bool:
        with self._lock:
            existing = self._rows.get(provider)
            if existing is None or existing.revision != expected_revision:
                return False
            self._rows[provider] = existing.model_copy(
                update={
                    "credentials": copy.deepcopy(dict(credentials)),
                    "revision": existing.revision + 1,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            return True


__all__ = ["InMemoryProviderSettingsRepository", "PostgresProviderSettingsRepository"]
