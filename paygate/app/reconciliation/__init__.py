"""Payment confirmation and webhook reconciliation."""

from .models import ConfirmationTrigger, ReconciliationOutcome, WebhookEventRecord
from .repository import InMemoryWebhookEventRepository, PostgresWebhookEventRepository
from .service import ConfirmationReconciler, ConfirmationRepository, WebhookEventRepository

__all__ = [
    "ConfirmationTrigger",
    "ReconciliationOutcome",
    "WebhookEventRecord",
    "InMemoryWebhookEventRepository",
    "PostgresWebhookEventRepository",
    "ConfirmationReconciler",
    "ConfirmationRepository",
    "WebhookEventRepository",
]
