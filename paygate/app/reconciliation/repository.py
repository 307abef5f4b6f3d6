"""Storage of processed webhook event ids."""
from __future__ import annotations

import threading
from typing import Dict, Tuple

from ..db import PostgresRepository
from .models import WebhookEventRecord


class PostgresWebhookEventRepository(PostgresRepository):
    def has_processed(self, provider: str, event_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT 1
                FROM payment_webhook_events
                WHERE provider = %s AND event_id = %s
                LIMIT 1
                """,
                (provider, event_id),
            )
            return cursor.fetchone() is not None

    def mark_processed(self, record: WebhookEventRecord) -> bool:
        """Return ``False`` when the event had already been recorded."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO payment_webhook_events (provider, event_id, event_type, reference, processed_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (provider, event_id) DO NOTHING
                """,
                (
                    record.provider.value,
                    record.event_id,
                    record.event_type,
                    record.reference,
                    record.processed_at,
                ),
            )
            return cursor.rowcount > 0


class InMemoryWebhookEventRepository:
    def __init__(self) -> None:
        self.events: Dict[Tuple[str, str], WebhookEventRecord] = {}
        self._lock = threading.Lock()

    def has_processed(self, provider: str, event_id: str) -> bool:
        with self._lock:
            return (provider, event_id) in self.events

    def mark_processed(self, record: WebhookEventRecord) -> bool:
        key = (record.provider.value, record.event_id)
        with self._lock:
            if key in self.events:
                return False
            self.events[key] = record
            return True


__all__ = ["InMemoryWebhookEventRepository", "PostgresWebhookEventRepository"]
