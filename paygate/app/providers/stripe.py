"""Stripe adapter (global card processor) built on the official SDK."""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, TypeVar

import stripe

from ..errors import InvalidCredentials, ProviderUnavailable, SignatureInvalid, ValidationError
from .base import ProviderAdapter, with_query_param
from .models import (
    ConfirmationResult,
    ConfirmationStatus,
    PaymentMethod,
    ProviderCapabilities,
    ProviderName,
    ProviderSession,
    SessionRequest,
    WebhookNotification,
)

T = TypeVar("T")

WEBHOOK_TOLERANCE_SECONDS = 300
_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def with_session_placeholder(url: str) -> str:
    """Point the ``reference`` query parameter at Stripe's session id template."""

    return with_query_param(url, "reference", _SESSION_PLACEHOLDER)


class StripeAdapter(ProviderAdapter):
    name = ProviderName.STRIPE
    required_credentials = ("secretKey",)
    capabilities = ProviderCapabilities(
        countries=None,
        currencies=frozenset({"USD", "EUR", "GBP"}),
        payment_methods=frozenset({PaymentMethod.CARD, PaymentMethod.APPLE_PAY, PaymentMethod.GOOGLE_PAY}),
        supports_one_time=False,
        native_idempotency=True,
    )

    @property
    def _api_key(self) -> str:
        return self.credentials.get("secretKey", "")

    def _call(self, func: Callable[[], T], *, not_found_ok: bool = False) -> Optional[T]:
        try:
            return self._run_with_timeout(func)
        except (stripe.AuthenticationError, stripe.PermissionError) as exc:
            raise InvalidCredentials(
                message=f"stripe rejected the configured credentials: {type(exc).__name__}",
            ) from exc
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise ProviderUnavailable(message=f"stripe unavailable: {type(exc).__name__}") from exc
        except stripe.InvalidRequestError as exc:
            if not_found_ok and exc.http_status == 404:
                return None
            raise ProviderUnavailable(
                message=f"stripe rejected the request: {exc.user_message or exc.code}",
                code="provider_rejected",
                retryable=False,
            ) from exc
        except stripe.StripeError as exc:
            raise ProviderUnavailable(message=f"stripe error: {type(exc).__name__}") from exc

    def _create_session(self, request: SessionRequest) -> ProviderSession:
        if not request.recurring_interval:
            raise ValidationError(message="Stripe checkout only sells recurring plans")

        params = {
            "mode": "subscription",
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": request.currency.lower(),
                        "unit_amount": request.amount,
                        "recurring": {"interval": request.recurring_interval},
                        "product_data": {"name": request.description or "Subscription"},
                    },
                }
            ],
            "success_url": with_session_placeholder(request.return_url),
            "cancel_url": request.cancel_url,
            "customer_email": str(request.customer.email),
            "client_reference_id": request.reference,
            "metadata": {**request.metadata, "checkout_reference": request.reference},
        }
        session = self._call(
            lambda: stripe.checkout.Session.create(
                api_key=self._api_key,
                idempotency_key=request.idempotency_key,
                **params,
            )
        )
        url = session.get("url") if session else None
        if not session or not url:
            raise ProviderUnavailable(message="Stripe did not return a checkout URL")
        return ProviderSession(
            reference=session["id"],
            redirect_url=url,
            provider_session_id=session["id"],
        )

    def verify_transaction(self, reference: str) -> ConfirmationResult:
        session = self._call(
            lambda: stripe.checkout.Session.retrieve(reference, api_key=self._api_key),
            not_found_ok=True,
        )
        if session is None:
            return ConfirmationResult(
                provider=self.name,
                reference=reference,
                status=ConfirmationStatus.PENDING,
                provider_status="not_found",
            )

        payment_status = str(session.get("payment_status") or "").lower()
        session_status = str(session.get("status") or "").lower()
        if payment_status == "paid":
            status = ConfirmationStatus.SUCCESS
        elif session_status == "expired":
            status = ConfirmationStatus.FAILED
        else:
            status = ConfirmationStatus.PENDING
        amount_total = session.get("amount_total")
        return ConfirmationResult(
            provider=self.name,
            reference=reference,
            status=status,
            verified_amount=int(amount_total) if amount_total is not None else None,
            verified_currency=session.get("currency"),
            transaction_id=session.get("subscription") or session.get("payment_intent"),
            provider_status=payment_status or session_status or None,
        )

    def test_connection(self) -> None:
        self._call(lambda: stripe.Balance.retrieve(api_key=self._api_key))

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        secret = self.credentials.get("webhookSecret", "")
        signature = headers.get("stripe-signature")
        if not secret or not signature:
            raise SignatureInvalid(message="Stripe webhook secret or signature missing")
        try:
            event: Any = stripe.Webhook.construct_event(
                body,
                signature,
                secret,
                tolerance=WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalid(message="Stripe webhook signature mismatch") from exc
        except ValueError as exc:
            raise ValidationError(message="Malformed Stripe webhook payload") from exc

        obj = (event.get("data") or {}).get("object") or {}
        reference = obj.get("id") if obj.get("object") == "checkout.session" else None
        return WebhookNotification(
            provider=self.name,
            event_id=str(event["id"]),
            event_type=str(event.get("type") or "unknown"),
            reference=reference,
            transaction_id=obj.get("payment_intent") or obj.get("subscription"),
        )


__all__ = ["StripeAdapter", "with_session_placeholder"]
