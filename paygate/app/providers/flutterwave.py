"""Flutterwave adapter (regional card and mobile-money gateway, v3 API)."""
from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

from ..errors import ProviderUnavailable, SignatureInvalid, ValidationError
from ..money import format_major, to_minor_units
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
from .signatures import verify_hmac_sha256_base64, verify_static_hash

_PAYMENT_OPTIONS = {
    PaymentMethod.CARD: "card",
    PaymentMethod.MOBILE_MONEY: "mobilemoney,mpesa,ussd,account,banktransfer",
}
_DEFAULT_PAYMENT_OPTIONS = "card,mobilemoney,mpesa,ussd,account,banktransfer"


def payment_options_for(method: Optional[PaymentMethod]) -> str:
    if method is None:
        return _DEFAULT_PAYMENT_OPTIONS
    return _PAYMENT_OPTIONS.get(method, _DEFAULT_PAYMENT_OPTIONS)


class FlutterwaveAdapter(ProviderAdapter):
    name = ProviderName.FLUTTERWAVE
    base_url = "https://api.flutterwave.com/v3"
    required_credentials = ("clientSecret",)
    capabilities = ProviderCapabilities(
        countries=None,
        currencies=frozenset({"NGN", "GHS", "KES", "ZAR", "USD", "EUR", "GBP"}),
        payment_methods=frozenset({PaymentMethod.CARD, PaymentMethod.MOBILE_MONEY}),
        supports_one_time=True,
        native_idempotency=False,
    )

    @property
    def supports_inline(self) -> bool:
        return bool(self.credentials.get("publicKey"))

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.get('clientSecret', '')}",
            "Content-Type": "application/json",
        }

    def _create_session(self, request: SessionRequest) -> ProviderSession:
        email = str(request.customer.email)
        payment_options = payment_options_for(request.payment_method)
        payload: Dict[str, Any] = {
            "tx_ref": request.reference,
            "amount": format_major(request.amount, request.currency),
            "currency": request.currency,
            "payment_options": payment_options,
            "redirect_url": with_query_param(request.return_url, "reference", request.reference),
            "customer": {
                "email": email,
                "name": request.customer.name or email.split("@")[0],
            },
            "customizations": {"title": request.description or "Subscription checkout"},
            "meta": {**request.metadata, "cancel_url": request.cancel_url},
        }
        _, body = self._request("POST", "/payments", json=payload)
        data = body.get("data") or {}
        link = data.get("link")
        if not link:
            raise ProviderUnavailable(message="Flutterwave did not return a payment link")

        inline_payload = None
        if self.supports_inline:
            inline_payload = {
                "provider": self.name.value,
                "publicKey": self.credentials["publicKey"],
                "txRef": request.reference,
                "amount": payload["amount"],
                "currency": request.currency,
                "paymentOptions": payment_options,
                "customer": payload["customer"],
            }
        return ProviderSession(
            reference=request.reference,
            redirect_url=link,
            inline_payload=inline_payload,
        )

    def verify_transaction(self, reference: str) -> ConfirmationResult:
        status_code, body = self._request(
            "GET",
            "/transactions/verify_by_reference",
            params={"tx_ref": reference},
            allow_status=(400, 404),
        )
        if status_code in (400, 404):
            return ConfirmationResult(
                provider=self.name,
                reference=reference,
                status=ConfirmationStatus.PENDING,
                provider_status="not_found",
            )
        data = body.get("data") or {}
        provider_status = str(data.get("status") or "").lower()
        if provider_status == "successful":
            status = ConfirmationStatus.SUCCESS
        elif provider_status in {"failed", "cancelled"}:
            status = ConfirmationStatus.FAILED
        else:
            status = ConfirmationStatus.PENDING

        currency = data.get("currency")
        amount = data.get("amount")
        return ConfirmationResult(
            provider=self.name,
            reference=str(data.get("tx_ref") or reference),
            status=status,
            verified_amount=to_minor_units(amount, currency) if amount is not None and currency else None,
            verified_currency=currency,
            transaction_id=str(data["id"]) if data.get("id") is not None else None,
            provider_status=provider_status or None,
        )

    def test_connection(self) -> None:
        self._request("GET", "/banks/NG")

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        secret_hash = self.credentials.get("webhookSecretHash", "")
        signature = headers.get("flutterwave-signature")
        if signature:
            verified = verify_hmac_sha256_base64(secret_hash, body, signature)
        else:
            verified = verify_static_hash(secret_hash, headers.get("verif-hash"))
        if not verified:
            raise SignatureInvalid(message="Flutterwave webhook signature mismatch")

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise ValidationError(message="Malformed Flutterwave webhook payload") from exc
        if not isinstance(payload, dict):
            raise ValidationError(message="Malformed Flutterwave webhook payload")

        event_type = str(payload.get("event") or payload.get("event.type") or "unknown")
        data = payload.get("data") or {}
        transaction_id = str(data["id"]) if data.get("id") is not None else None
        return WebhookNotification(
            provider=self.name,
            event_id=f"{event_type}:{transaction_id or data.get('tx_ref') or 'none'}",
            event_type=event_type,
            reference=data.get("tx_ref"),
            transaction_id=transaction_id,
        )


__all__ = ["FlutterwaveAdapter", "payment_options_for"]
