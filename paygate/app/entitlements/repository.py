"""Persistence for entitlements and the per-reference grant ledger."""
from __future__ import annotations

import threading
from typing import Dict, Optional

from ..db import PostgresRepository
from .models import BillingInterval, Entitlement, EntitlementGrant, PlanKey, SubscriptionStatus


def _row_to_entitlement(row: dict) -> Entitlement:
    return Entitlement(
        subject_key=row["subject_key"],
        plan_key=PlanKey(row["plan_key"]),
        billing_interval=BillingInterval(row["billing_interval"]),
        status=SubscriptionStatus(row["status"]),
        current_period_start=row["current_period_start"],
        current_period_end=row["current_period_end"],
        source_reference=row["source_reference"],
        provider=row["provider"],
        updated_at=row["updated_at"],
    )


class PostgresEntitlementRepository(PostgresRepository):
    """Writes the grant row and the entitlement in a single transaction."""

    def apply_grant(self, grant: EntitlementGrant, entitlement: Entitlement) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO entitlement_grants (
                    reference,
                    subject_key,
                    plan_key,
                    billing_interval,
                    provider,
                    amount,
                    currency,
                    granted_at
                )
                VALUES (%(reference)s, %(subject_key)s, %(plan_key)s, %(billing_interval)s,
                        %(provider)s, %(amount)s, %(currency)s, %(granted_at)s)
                ON CONFLICT (reference) DO NOTHING
                """,
                {
                    "reference": grant.reference,
                    "subject_key": grant.subject_key,
                    "plan_key": grant.plan_key.value,
                    "billing_interval": grant.billing_interval.value,
                    "provider": grant.provider,
                    "amount": grant.amount,
                    "currency": grant.currency,
                    "granted_at": grant.granted_at,
                },
            )
            if cursor.rowcount == 0:
                return False

            cursor.execute(
                """
                INSERT INTO entitlements (
                    subject_key,
                    plan_key,
                    billing_interval,
                    status,
                    current_period_start,
                    current_period_end,
                    source_reference,
                    provider
                )
                VALUES (%(subject_key)s, %(plan_key)s, %(billing_interval)s, %(status)s,
                        %(current_period_start)s, %(current_period_end)s,
                        %(source_reference)s, %(provider)s)
                ON CONFLICT (subject_key) DO UPDATE SET
                    plan_key = EXCLUDED.plan_key,
                    billing_interval = EXCLUDED.billing_interval,
                    status = EXCLUDED.status,
                    current_period_start = EXCLUDED.current_period_start,
                    current_period_end = EXCLUDED.current_period_end,
                    source_reference = EXCLUDED.source_reference,
                    provider = EXCLUDED.provider,
                    updated_at = NOW()
                """,
                {
                    "subject_key": entitlement.subject_key,
                    "plan_key": entitlement.plan_key.value,
                    "billing_interval": entitlement.billing_interval.value,
                    "status": entitlement.status.value,
                    "current_period_start": entitlement.current_period_start,
                    "current_period_end": entitlement.current_period_end,
                    "source_reference": entitlement.source_reference,
                    "provider": entitlement.provider,
                },
            )
            return True

    def get_entitlement(self, subject_key: str) -> Optional[Entitlement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlements
                WHERE subject_key = %s
                LIMIT 1
                """,
                (subject_key,),
            )
            row = cursor.fetchone()
            return _row_to_entitlement(row) if row else None


class InMemoryEntitlementRepository:
    """Thread-safe repository used for local development and tests."""

    def __init__(self) -> None:
        self.grants: Dict[str, EntitlementGrant] = {}
        self.entitlements: Dict[str, Entitlement] = {}
        self._lock = threading.Lock()

    def apply_grant(self, grant: EntitlementGrant, entitlement: Entitlement) -> bool:
        with self._lock:
            if grant.reference in self.grants:
                return False
            self.grants[grant.reference] = grant
            self.entitlements[entitlement.subject_key] = entitlement
            return True

    def get_entitlement(self, subject_key: str) -> Optional[Entitlement]:
        with self._lock:
            return self.entitlements.get(subject_key)


__all__ = ["InMemoryEntitlementRepository", "PostgresEntitlementRepository"]
