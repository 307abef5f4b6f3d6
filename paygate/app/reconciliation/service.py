"""Turns client callbacks and provider webhooks into exactly-once entitlement grants."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional, Protocol

from ..checkout.locks import KeyedLock
from ..checkout.models import CheckoutSession, PaymentAuditEvent, PaymentEventType, PaymentState
from ..checkout.service import NullPaymentEventLogger, PaymentEventLogger
from ..config import CheckoutConfig
from ..entitlements.models import EntitlementSubject
from ..entitlements.service import EntitlementService
from ..errors import (
    InvalidCredentials,
    PaymentError,
    ProviderUnavailable,
    ReconciliationConflict,
    ReferenceNotFound,
    SignatureInvalid,
    ValidationError,
)
from ..providers.base import wrap_unexpected
from ..providers.models import ConfirmationResult, ConfirmationStatus, ProviderName
from ..providers.registry import ProviderRegistry
from .models import ConfirmationTrigger, ReconciliationOutcome, WebhookEventRecord

logger = logging.getLogger("payments")


class ConfirmationRepository(Protocol):
    def get_by_reference(self, reference: str) -> Optional[CheckoutSession]:
        ...

    def claim_for_verification(
        self, reference: str, *, stale_before: datetime
    ) -> Optional[CheckoutSession]:
        ...

    def release_claim(self, reference: str) -> None:
        ...

    def finish_verification(
        self,
        reference: str,
        *,
        state: PaymentState,
        result: ConfirmationResult,
        rejection_reason: Optional[str] = None,
    ) -> Optional[CheckoutSession]:
        ...


class WebhookEventRepository(Protocol):
    def has_processed(self, provider: str, event_id: str) -> bool:
        ...

    def mark_processed(self, record: WebhookEventRecord) -> bool:
        ...


def _stored_outcome(session: CheckoutSession) -> ReconciliationOutcome:
    return ReconciliationOutcome(
        reference=session.reference,
        provider=session.provider,
        state=session.state,
        status=session.confirmation_status,
        already_processed=True,
        reason=session.rejection_reason,
    )


def _mismatch(session: CheckoutSession, result: ConfirmationResult) -> Optional[str]:
    if result.status is not ConfirmationStatus.SUCCESS:
        return f"Provider reported {result.provider_status or result.status.value}"
    if result.verified_amount != session.amount:
        return f"Verified amount {result.verified_amount} does not match {session.amount}"
    if (result.verified_currency or "").upper() != session.currency:
        return f"Verified currency {result.verified_currency} does not match {session.currency}"
    return None


class ConfirmationReconciler:
    """State machine ``initiated -> verifying -> confirmed | rejected`` per reference."""

    def __init__(
        self,
        *,
        sessions: ConfirmationRepository,
        registry: ProviderRegistry,
        entitlements: EntitlementService,
        webhook_events: WebhookEventRepository,
        config: CheckoutConfig,
        event_logger: Optional[PaymentEventLogger] = None,
        locks: Optional[KeyedLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sessions = sessions
        self._registry = registry
        self._entitlements = entitlements
        self._webhook_events = webhook_events
        self._config = config
        self._event_logger = event_logger or NullPaymentEventLogger()
        self._locks = locks or KeyedLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def confirm(
        self,
        provider: ProviderName,
        reference: str,
        *,
        trigger: ConfirmationTrigger = ConfirmationTrigger.CLIENT_CALLBACK,
        client_transaction_id: Optional[str] = None,
    ) -> ReconciliationOutcome:
        """Verify ``reference`` with its provider and apply the entitlement at most once.

        ``client_transaction_id`` is whatever the buyer's browser reported. It is only
        compared against the verified id and logged; it never decides the outcome.
        """

        session = self._sessions.get_by_reference(reference)
        if session is None:
            raise ReferenceNotFound(message=f"No checkout session for reference {reference}")
        if session.provider is not provider:
            raise ValidationError(message=f"Reference {reference} does not belong to {provider.value}")
        if session.state.is_terminal:
            logger.info("Reference %s already %s (%s)", reference, session.state.value, trigger.value)
            return _stored_outcome(session)

        try:
            with self._locks.hold(reference, timeout=self._config.confirmation_lock_wait_seconds):
                return self._confirm_locked(session, trigger, client_transaction_id)
        except ReconciliationConflict as exc:
            logger.info("Reference %s finished elsewhere: %s", reference, exc.message)
            current = self._sessions.get_by_reference(reference)
            return _stored_outcome(current or session)
        except TimeoutError as exc:
            raise ProviderUnavailable(
                message=f"Confirmation of {reference} is already in progress",
                public_message="Payment confirmation is in progress, please retry shortly.",
            ) from exc

    def retry(self, reference: str) -> ReconciliationOutcome:
        """Manual admin re-run for a reference that is not yet terminal."""

        session = self._sessions.get_by_reference(reference)
        if session is None:
            raise ReferenceNotFound(message=f"No checkout session for reference {reference}")
        return self.confirm(session.provider, reference, trigger=ConfirmationTrigger.ADMIN_RETRY)

    def _confirm_locked(
        self,
        session: CheckoutSession,
        trigger: ConfirmationTrigger,
        client_transaction_id: Optional[str] = None,
    ) -> ReconciliationOutcome:
        reference = session.reference
        stale_before = self._clock() - timedelta(seconds=self._config.confirmation_stale_after_seconds)
        claimed = self._sessions.claim_for_verification(reference, stale_before=stale_before)
        if claimed is None:
            current = self._sessions.get_by_reference(reference)
            if current is not None and current.state.is_terminal:
                raise ReconciliationConflict(message=f"Reference {reference} is already {current.state.value}")
            raise ProviderUnavailable(
                message=f"Confirmation of {reference} is already in progress",
                public_message="Payment confirmation is in progress, please retry shortly.",
            )

        try:
            result = self._registry.get_adapter(claimed.provider).verify_transaction(reference)
        except InvalidCredentials as exc:
            self._sessions.release_claim(reference)
            logger.error("Verification of %s failed, credentials rejected: %s", reference, exc.message)
            raise
        except PaymentError:
            self._sessions.release_claim(reference)
            raise
        except Exception as exc:
            self._sessions.release_claim(reference)
            raise wrap_unexpected(claimed.provider, exc) from exc

        if (
            client_transaction_id
            and result.transaction_id
            and client_transaction_id != result.transaction_id
        ):
            logger.warning(
                "Client reported transaction %s for %s but %s verified %s",
                client_transaction_id,
                reference,
                claimed.provider.value,
                result.transaction_id,
            )

        if result.status is ConfirmationStatus.PENDING:
            self._sessions.release_claim(reference)
            self._log(PaymentEventType.PAYMENT_PENDING, claimed, trigger)
            return ReconciliationOutcome(
                reference=reference,
                provider=claimed.provider,
                state=PaymentState.INITIATED,
                status=ConfirmationStatus.PENDING,
            )

        rejection = _mismatch(claimed, result)
        if rejection:
            finished = self._sessions.finish_verification(
                reference, state=PaymentState.REJECTED, result=result, rejection_reason=rejection
            )
            logger.warning("Rejected payment %s: %s", reference, rejection)
            self._log(PaymentEventType.PAYMENT_REJECTED, claimed, trigger, reason=rejection)
            return ReconciliationOutcome(
                reference=reference,
                provider=claimed.provider,
                state=finished.state if finished else PaymentState.REJECTED,
                status=result.status,
                reason=rejection,
            )

        applied = self._entitlements.apply_payment(
            reference=reference,
            provider=claimed.provider.value,
            subject=EntitlementSubject(user_id=claimed.user_id, email=claimed.email),
            plan_key=claimed.plan_key,
            interval=claimed.billing_interval,
            amount=claimed.amount,
            currency=claimed.currency,
        )
        finished = self._sessions.finish_verification(
            reference, state=PaymentState.CONFIRMED, result=result
        )
        logger.info(
            "Confirmed payment %s via %s (entitlement %s)",
            reference,
            trigger.value,
            "applied" if applied else "already applied",
        )
        self._log(PaymentEventType.PAYMENT_CONFIRMED, claimed, trigger, applied=applied)
        return ReconciliationOutcome(
            reference=reference,
            provider=claimed.provider,
            state=finished.state if finished else PaymentState.CONFIRMED,
            status=result.status,
            entitlement_applied=applied,
        )

    def handle_webhook(
        self,
        provider: ProviderName,
        body: bytes,
        headers: Mapping[str, str],
    ) -> Optional[ReconciliationOutcome]:
        """Verify the signature, skip redeliveries, and reconcile the referenced payment."""

        adapter = self._registry.get_adapter(provider)
        try:
            notification = adapter.parse_webhook(body, headers)
        except SignatureInvalid as exc:
            logger.warning("Dropped %s webhook: %s", provider.value, exc.message)
            self._event_logger.log(
                PaymentAuditEvent(
                    event_type=PaymentEventType.WEBHOOK_SIGNATURE_INVALID,
                    provider=provider,
                    metadata={"reason": exc.message},
                )
            )
            raise

        if self._webhook_events.has_processed(provider.value, notification.event_id):
            self._event_logger.log(
                PaymentAuditEvent(
                    event_type=PaymentEventType.WEBHOOK_DUPLICATE,
                    provider=provider,
                    reference=notification.reference,
                    metadata={"event_id": notification.event_id},
                )
            )
            return None

        outcome: Optional[ReconciliationOutcome] = None
        if notification.reference:
            try:
                outcome = self.confirm(
                    provider, notification.reference, trigger=ConfirmationTrigger.WEBHOOK
                )
            except ReferenceNotFound:
                logger.warning(
                    "%s webhook %s references unknown checkout %s",
                    provider.value,
                    notification.event_id,
                    notification.reference,
                )

        if outcome is None or outcome.status is not ConfirmationStatus.PENDING:
            self._webhook_events.mark_processed(
                WebhookEventRecord(
                    provider=provider,
                    event_id=notification.event_id,
                    event_type=notification.event_type,
                    reference=notification.reference,
                )
            )
        return outcome

    def _log(
        self,
        event_type: PaymentEventType,
        session: CheckoutSession,
        trigger: ConfirmationTrigger,
        **metadata,
    ) -> None:
        self._event_logger.log(
            PaymentAuditEvent(
                event_type=event_type,
                reference=session.reference,
                provider=session.provider,
                metadata={"trigger": trigger.value, **metadata},
            )
        )


__all__ = ["ConfirmationReconciler", "ConfirmationRepository", "WebhookEventRepository"]
