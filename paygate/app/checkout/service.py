"""Checkout orchestration: eligibility, pricing, and idempotent provider sessions."""
from __future__ import annotations

import logging
from typing import Mapping, Optional, Protocol
from urllib.parse import urljoin, urlsplit
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from ..config import CheckoutConfig
from ..eligibility import (
    EligibilityContext,
    EligibilityResolver,
    EligibilityResult,
    currency_for_country,
    detect_country_from_headers,
    normalize_country,
)
from ..entitlements.catalog import PLAN_CATALOG, PriceQuote, quote_price
from ..entitlements.models import BillingInterval, PlanKey
from ..errors import (
    EligibilityUnavailable,
    InvalidCredentials,
    PaymentError,
    ProviderUnavailable,
    ValidationError,
)
from ..providers.base import wrap_unexpected
from ..providers.models import CustomerDetails, PaymentMethod, ProviderName, SessionRequest
from ..providers.registry import ProviderRegistry
from .locks import KeyedLock
from .models import (
    CheckoutOutcome,
    CheckoutRequest,
    CheckoutSession,
    CheckoutUi,
    IdempotencyKey,
    PaymentAuditEvent,
    PaymentEventType,
)

logger = logging.getLogger("payments")

DEFAULT_SUCCESS_PATH = "/billing/success"
DEFAULT_CANCEL_PATH = "/billing/cancel"


class CheckoutSessionRepository(Protocol):
    def insert_session(self, session: CheckoutSession):
        ...

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[CheckoutSession]:
        ...

    def get_by_reference(self, reference: str) -> Optional[CheckoutSession]:
        ...


class PaymentEventLogger(Protocol):
    """Captures structured payment audit events."""

    def log(self, event: PaymentAuditEvent) -> None:
        ...


class NullPaymentEventLogger:
    def log(self, event: PaymentAuditEvent) -> None:
        return None


def _parse_enum(enum_cls, value: Optional[str], label: str):
    try:
        return enum_cls((value or "").strip().lower())
    except ValueError as exc:
        raise ValidationError(message=f"Invalid {label}: {value!r}") from exc


def resolve_return_url(value: Optional[str], *, base_url: str, default_path: str) -> str:
    """Absolute http(s) URL, or a same-site path resolved against ``base_url``."""

    candidate = (value or "").strip() or default_path
    if candidate.startswith("/") and not candidate.startswith("//"):
        return urljoin(base_url.rstrip("/") + "/", candidate.lstrip("/"))
    parts = urlsplit(candidate)
    if parts.scheme in ("http", "https") and parts.netloc:
        return candidate
    raise ValidationError(message="Return URLs must be http(s) URLs or site-relative paths")


class CheckoutSessionOrchestrator:
    """Creates at most one provider session per idempotency key."""

    def __init__(
        self,
        *,
        repository: CheckoutSessionRepository,
        registry: ProviderRegistry,
        resolver: EligibilityResolver,
        config: CheckoutConfig,
        event_logger: Optional[PaymentEventLogger] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._resolver = resolver
        self._config = config
        self._event_logger = event_logger or NullPaymentEventLogger()
        self._locks = locks or KeyedLock()

    # Validation ------------------------------------------------------------------

    def _validate_plan(self, request: CheckoutRequest) -> PlanKey:
        if not (request.plan_id or "").strip():
            raise ValidationError(message="planId is required")
        plan_key = _parse_enum(PlanKey, request.plan_id, "planId")
        if plan_key not in PLAN_CATALOG:
            raise ValidationError(message=f"Plan {plan_key.value} cannot be purchased")
        return plan_key

    def _validate_customer(self, request: CheckoutRequest, user_id: Optional[str]) -> CustomerDetails:
        email = (request.email or "").strip()
        if not email:
            raise ValidationError(message="email is required")
        try:
            return CustomerDetails(email=email, name=request.customer_name, user_id=user_id)
        except PydanticValidationError as exc:
            raise ValidationError(message="email is not a valid address") from exc

    def build_context(
        self,
        request: CheckoutRequest,
        interval: BillingInterval,
        headers: Optional[Mapping[str, str]] = None,
    ) -> EligibilityContext:
        country = normalize_country(request.country_code) or detect_country_from_headers(
            headers or {}, default=self._config.default_country
        )
        currency = (request.currency_code or "").strip().upper()
        if not currency or not all(currency in plan.monthly_prices for plan in PLAN_CATALOG.values()):
            currency = currency_for_country(country)
        return EligibilityContext(
            country_code=country,
            currency_code=currency,
            billing_interval=interval,
        )

    # Provider selection ----------------------------------------------------------

    def _select_provider(
        self,
        requested: Optional[ProviderName],
        eligibility: EligibilityResult,
    ):
        if not eligibility.available_providers or eligibility.recommended_provider is None:
            raise EligibilityUnavailable(
                message="No payment provider is available for this checkout",
                detail={
                    "providers": {
                        entry.provider.value: entry.reason for entry in eligibility.providers
                    }
                },
            )
        if requested is None:
            return eligibility.recommended_provider, None
        if eligibility.is_available(requested):
            return requested, None

        chosen = eligibility.recommended_provider
        entry = eligibility.for_provider(requested)
        why = entry.reason if entry and entry.reason else "not available"
        reason = f"{requested.value} cannot be used ({why}); using {chosen.value} instead"
        return chosen, reason

    def _select_method(
        self,
        requested: Optional[PaymentMethod],
        provider: ProviderName,
        eligibility: EligibilityResult,
    ) -> Optional[PaymentMethod]:
        entry = eligibility.for_provider(provider)
        if requested is None or entry is None:
            return None
        return requested if requested in entry.supported_payment_methods else None

    # Orchestration ---------------------------------------------------------------

    def create_checkout_session(
        self,
        request: CheckoutRequest,
        *,
        user_id: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> CheckoutOutcome:
        """Validate, choose a provider, and return a redirect or inline parameters.

        ``user_id`` is ``None`` for anonymous buyers; inline widgets are only
        offered to authenticated callers.
        """

        plan_key = self._validate_plan(request)
        if not (request.billing_interval or "").strip():
            raise ValidationError(message="billingInterval is required")
        interval = _parse_enum(BillingInterval, request.billing_interval, "billingInterval")
        customer = self._validate_customer(request, user_id)
        requested_provider = (
            _parse_enum(ProviderName, request.provider, "provider") if request.provider else None
        )
        requested_method = (
            _parse_enum(PaymentMethod, request.payment_method, "paymentMethod")
            if request.payment_method
            else None
        )
        success_url = resolve_return_url(
            request.success_url, base_url=self._config.app_base_url, default_path=DEFAULT_SUCCESS_PATH
        )
        cancel_url = resolve_return_url(
            request.cancel_url, base_url=self._config.app_base_url, default_path=DEFAULT_CANCEL_PATH
        )

        context = self.build_context(request, interval, headers)
        eligibility = self._resolver.resolve(context)
        provider, substitution_reason = self._select_provider(requested_provider, eligibility)
        if substitution_reason:
            logger.info("Provider substituted: %s", substitution_reason)
            self._event_logger.log(
                PaymentAuditEvent(
                    event_type=PaymentEventType.PROVIDER_SUBSTITUTED,
                    provider=provider,
                    metadata={
                        "requested": requested_provider.value if requested_provider else None,
                        "reason": substitution_reason,
                    },
                )
            )
        method = self._select_method(requested_method, provider, eligibility)

        quote = quote_price(
            plan_key,
            interval,
            context.currency_code,
            yearly_multiplier=self._config.yearly_multiplier,
            trial_multiplier=self._config.trial_multiplier,
        )
        key = IdempotencyKey(
            seed=(request.idempotency_key or "").strip() or uuid4().hex,
            plan_key=plan_key,
            billing_interval=interval,
            country_code=context.country_code,
            currency_code=context.currency_code,
            provider=provider,
            payment_method=method,
        )

        try:
            with self._locks.hold(key.value, timeout=self._config.idempotency_wait_seconds):
                session, reused = self._get_or_create(
                    key, quote, customer, method, success_url, cancel_url, context.country_code
                )
        except TimeoutError as exc:
            raise ProviderUnavailable(
                message="A checkout with the same idempotency key is still being created",
                public_message="Checkout is still being prepared, please retry shortly.",
            ) from exc

        return self._outcome(
            session,
            checkout_ui=request.checkout_ui,
            authenticated=user_id is not None,
            requested_provider=requested_provider,
            substitution_reason=substitution_reason,
            reused=reused,
        )

    def _get_or_create(
        self,
        key: IdempotencyKey,
        quote: PriceQuote,
        customer: CustomerDetails,
        method: Optional[PaymentMethod],
        success_url: str,
        cancel_url: str,
        country_code: str,
    ):
        existing = self._repository.get_by_idempotency_key(key.value)
        if existing is not None:
            self._log_session(PaymentEventType.SESSION_REUSED, existing)
            return existing, True

        provider = key.provider
        adapter = self._registry.get_adapter(provider)
        session_request = SessionRequest(
            reference=key.reference(),
            amount=quote.amount,
            currency=quote.currency,
            customer=customer,
            idempotency_key=key.value,
            return_url=success_url,
            cancel_url=cancel_url,
            description=f"{quote.plan_key.value.title()} plan ({quote.billing_interval.value})",
            payment_method=method,
            recurring_interval=quote.billing_interval.recurring_interval,
            metadata={
                "plan": quote.plan_key.value,
                "interval": quote.billing_interval.value,
                "country": country_code,
            },
        )
        try:
            provider_session = adapter.create_session(session_request)
        except InvalidCredentials as exc:
            logger.error("Provider %s rejected configured credentials: %s", provider.value, exc.message)
            self._event_logger.log(
                PaymentAuditEvent(
                    event_type=PaymentEventType.CREDENTIALS_REJECTED,
                    provider=provider,
                    reference=session_request.reference,
                )
            )
            raise
        except PaymentError as exc:
            logger.warning("Provider %s failed to create session: %s", provider.value, exc.message)
            self._event_logger.log(
                PaymentAuditEvent(
                    event_type=PaymentEventType.PROVIDER_FAILED,
                    provider=provider,
                    reference=session_request.reference,
                    metadata={"code": exc.code, "retryable": exc.retryable},
                )
            )
            raise
        except Exception as exc:
            raise wrap_unexpected(provider, exc) from exc

        session, created = self._repository.insert_session(
            CheckoutSession(
                reference=provider_session.reference,
                provider=provider,
                plan_key=quote.plan_key,
                billing_interval=quote.billing_interval,
                amount=quote.amount,
                currency=quote.currency,
                usd_equivalent=quote.usd_equivalent,
                email=str(customer.email),
                user_id=customer.user_id,
                country_code=country_code,
                payment_method=method,
                idempotency_key=key.value,
                redirect_url=provider_session.redirect_url,
                inline_params=provider_session.inline_payload,
                provider_session_id=provider_session.provider_session_id,
            )
        )
        self._log_session(
            PaymentEventType.SESSION_CREATED if created else PaymentEventType.SESSION_REUSED,
            session,
        )
        return session, not created

    def _log_session(self, event_type: PaymentEventType, session: CheckoutSession) -> None:
        self._event_logger.log(
            PaymentAuditEvent(
                event_type=event_type,
                reference=session.reference,
                provider=session.provider,
                metadata={
                    "amount": session.amount,
                    "currency": session.currency,
                    "plan": session.plan_key.value,
                    "interval": session.billing_interval.value,
                },
            )
        )

    def _outcome(
        self,
        session: CheckoutSession,
        *,
        checkout_ui: CheckoutUi,
        authenticated: bool,
        requested_provider: Optional[ProviderName],
        substitution_reason: Optional[str],
        reused: bool,
    ) -> CheckoutOutcome:
        use_inline = (
            checkout_ui is CheckoutUi.INLINE
            and authenticated
            and session.inline_params is not None
        )
        if not use_inline and not session.redirect_url:
            raise ProviderUnavailable(
                message=f"{session.provider.value} returned no redirect URL for {session.reference}",
            )
        return CheckoutOutcome(
            session=session,
            redirect_url=None if use_inline else session.redirect_url,
            inline_params=session.inline_params if use_inline else None,
            requested_provider=requested_provider,
            substitution_reason=substitution_reason,
            reused=reused,
        )


__all__ = [
    "CheckoutSessionOrchestrator",
    "CheckoutSessionRepository",
    "NullPaymentEventLogger",
    "PaymentEventLogger",
    "resolve_return_url",
]
