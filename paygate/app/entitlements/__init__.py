"""Entitlements domain models and services."""

from .catalog import PLAN_CATALOG, PlanDefinition, PriceQuote, get_plan_definition, quote_price
from .models import (
    BillingInterval,
    Entitlement,
    EntitlementGrant,
    EntitlementSubject,
    PlanKey,
    SubscriptionStatus,
)
from .repository import InMemoryEntitlementRepository, PostgresEntitlementRepository
from .service import EntitlementRepository, EntitlementService, add_months

__all__ = [
    "PLAN_CATALOG",
    "PlanDefinition",
    "PriceQuote",
    "get_plan_definition",
    "quote_price",
    "BillingInterval",
    "Entitlement",
    "EntitlementGrant",
    "EntitlementSubject",
    "PlanKey",
    "SubscriptionStatus",
    "InMemoryEntitlementRepository",
    "PostgresEntitlementRepository",
    "EntitlementRepository",
    "EntitlementService",
    "add_months",
]
