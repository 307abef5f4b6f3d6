"""Service that turns confirmed payments into entitlement changes."""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from .models import (
    BillingInterval,
    Entitlement,
    EntitlementGrant,
    EntitlementSubject,
    PlanKey,
    SubscriptionStatus,
)


class EntitlementRepository(Protocol):
    """Data access layer for entitlements."""

    def apply_grant(self, grant: EntitlementGrant, entitlement: Entitlement) -> bool:
        """Store both rows atomically; return ``False`` if the grant reference already exists."""

    def get_entitlement(self, subject_key: str) -> Optional[Entitlement]:
        ...


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class EntitlementService:
    """Computes subscription periods and applies each payment reference at most once."""

    def __init__(
        self,
        repository: EntitlementRepository,
        *,
        trial_days: int = 7,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._trial_days = trial_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def period_end(self, interval: BillingInterval, start: datetime) -> datetime:
        if interval is BillingInterval.YEARLY:
            return add_months(start, 12)
        if interval is BillingInterval.TRIAL:
            return start + timedelta(days=self._trial_days)
        return add_months(start, 1)

    def apply_payment(
        self,
        *,
        reference: str,
        provider: str,
        subject: EntitlementSubject,
        plan_key: PlanKey,
        interval: BillingInterval,
        amount: int,
        currency: str,
    ) -> bool:
        """Grant the plan for ``reference``. Returns ``False`` when it was granted before."""

        now = self._clock()
        grant = EntitlementGrant(
            reference=reference,
            subject_key=subject.key,
            plan_key=plan_key,
            billing_interval=interval,
            provider=provider,
            amount=amount,
            currency=currency,
            granted_at=now,
        )
        entitlement = Entitlement(
            subject_key=subject.key,
            plan_key=plan_key,
            billing_interval=interval,
            status=SubscriptionStatus.TRIALING if interval is BillingInterval.TRIAL else SubscriptionStatus.ACTIVE,
            current_period_start=now,
            current_period_end=self.period_end(interval, now),
            source_reference=reference,
            provider=provider,
            updated_at=now,
        )
        return self._repository.apply_grant(grant, entitlement)

    def get_entitlement(self, subject: EntitlementSubject) -> Optional[Entitlement]:
        return self._repository.get_entitlement(subject.key)


__all__ = ["EntitlementRepository", "EntitlementService", "add_months"]
