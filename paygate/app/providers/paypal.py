"""PayPal adapter (wallet processor) over the Orders v2 REST API."""
from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from ..errors import InvalidCredentials, ProviderUnavailable, SignatureInvalid, ValidationError
from ..money import format_major, to_minor_units
from .base import ProviderAdapter, with_query_param
from .models import (
    ConfirmationResult,
    ConfirmationStatus,
    ProviderCapabilities,
    ProviderName,
    ProviderSession,
    SessionRequest,
    WebhookNotification,
)

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"

_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalAdapter(ProviderAdapter):
    name = ProviderName.PAYPAL
    required_credentials = ("clientId", "clientSecret")
    capabilities = ProviderCapabilities(
        countries=None,
        currencies=frozenset({"USD", "EUR", "GBP"}),
        payment_methods=frozenset(),
        supports_one_time=True,
        native_idempotency=True,
    )

    @property
    def base_url(self) -> str:  # type: ignore[override]
        return SANDBOX_URL if self.test_mode else LIVE_URL

    def _access_token(self) -> str:
        _, body = self._request(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.credentials.get("clientId", ""), self.credentials.get("clientSecret", "")),
        )
        token = body.get("access_token")
        if not token:
            raise InvalidCredentials(message="paypal did not issue an access token")
        return str(token)

    def _authorized(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            **(extra or {}),
        }

    def _create_session(self, request: SessionRequest) -> ProviderSession:
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.reference,
                    "custom_id": request.reference,
                    "description": request.description or "Subscription checkout",
                    "amount": {
                        "currency_code": request.currency,
                        "value": format_major(request.amount, request.currency),
                    },
                }
            ],
            "application_context": {
                # PayPal appends token=<order id>; the confirm endpoint accepts it as the reference.
                "return_url": with_query_param(request.return_url, "provider", self.name.value),
                "cancel_url": request.cancel_url,
                "user_action": "PAY_NOW",
                "shipping_preference": "NO_SHIPPING",
            },
        }
        _, body = self._request(
            "POST",
            "/v2/checkout/orders",
            json=payload,
            headers=self._authorized({"PayPal-Request-Id": request.idempotency_key}),
        )
        order_id = body.get("id")
        approve_url = next(
            (
                link.get("href")
                for link in body.get("links") or []
                if link.get("rel") in {"approve", "payer-action"}
            ),
            None,
        )
        if not order_id or not approve_url:
            raise ProviderUnavailable(message="PayPal did not return an approval link")
        return ProviderSession(reference=str(order_id), redirect_url=approve_url, provider_session_id=str(order_id))

    def verify_transaction(self, reference: str) -> ConfirmationResult:
        path = f"/v2/checkout/orders/{quote(reference, safe='')}"
        status_code, order = self._request("GET", path, headers=self._authorized(), allow_status=(404,))
        if status_code == 404:
            return ConfirmationResult(
                provider=self.name,
                reference=reference,
                status=ConfirmationStatus.PENDING,
                provider_status="not_found",
            )

        provider_status = str(order.get("status") or "").upper()
        if provider_status == "APPROVED":
            # Capturing is what moves the money; the request id keeps repeats harmless.
            _, order = self._request(
                "POST",
                f"{path}/capture",
                json={},
                headers=self._authorized({"PayPal-Request-Id": f"capture-{reference}"}),
            )
            provider_status = str(order.get("status") or "").upper()

        if provider_status == "COMPLETED":
            status = ConfirmationStatus.SUCCESS
        elif provider_status == "VOIDED":
            status = ConfirmationStatus.FAILED
        else:
            status = ConfirmationStatus.PENDING

        amount, currency, capture_id = _captured_amount(order)
        return ConfirmationResult(
            provider=self.name,
            reference=reference,
            status=status,
            verified_amount=to_minor_units(amount, currency) if amount is not None and currency else None,
            verified_currency=currency,
            transaction_id=capture_id,
            provider_status=provider_status.lower() or None,
        )

    def test_connection(self) -> None:
        self._access_token()

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        webhook_id = self.credentials.get("webhookId", "")
        if not webhook_id:
            raise SignatureInvalid(message="PayPal webhook id is not configured")
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise ValidationError(message="Malformed PayPal webhook payload") from exc
        if not isinstance(event, dict):
            raise ValidationError(message="Malformed PayPal webhook payload")

        verification: Dict[str, Any] = {
            field_name: headers.get(header_name) for field_name, header_name in _SIGNATURE_HEADERS.items()
        }
        if not all(verification.values()):
            raise SignatureInvalid(message="PayPal webhook signature headers missing")
        verification["webhook_id"] = webhook_id
        verification["webhook_event"] = event

        _, result = self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            json=verification,
            headers=self._authorized(),
        )
        if str(result.get("verification_status") or "").upper() != "SUCCESS":
            raise SignatureInvalid(message="PayPal rejected the webhook signature")

        resource = event.get("resource") or {}
        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        reference = related.get("order_id") or (
            resource.get("id") if str(event.get("event_type", "")).startswith("CHECKOUT.ORDER") else None
        )
        return WebhookNotification(
            provider=self.name,
            event_id=str(event.get("id") or "unknown"),
            event_type=str(event.get("event_type") or "unknown"),
            reference=reference,
            transaction_id=resource.get("id"),
        )


def _captured_amount(order: Mapping[str, Any]):
    units = order.get("purchase_units") or []
    if not units:
        return None, None, None
    unit = units[0]
    captures = ((unit.get("payments") or {}).get("captures")) or []
    if captures:
        amount = captures[0].get("amount") or {}
        return amount.get("value"), amount.get("currency_code"), captures[0].get("id")
    amount = unit.get("amount") or {}
    return amount.get("value"), amount.get("currency_code"), None


__all__ = ["PayPalAdapter"]
