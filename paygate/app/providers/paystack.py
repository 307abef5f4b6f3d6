"""Paystack adapter (regional card and mobile-money gateway)."""
from __future__ import annotations

import json
from typing import Any, Dict, Mapping
from urllib.parse import quote

from ..errors import ProviderUnavailable, SignatureInvalid, ValidationError
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
from .signatures import verify_hmac_sha512_hex

_FAILED_STATUSES = {"failed", "abandoned", "reversed"}


class PaystackAdapter(ProviderAdapter):
    name = ProviderName.PAYSTACK
    base_url = "https://api.paystack.co"
    required_credentials = ("secretKey",)
    capabilities = ProviderCapabilities(
        countries=frozenset({"NG", "GH", "ZA", "KE", "CI"}),
        currencies=frozenset({"NGN", "GHS", "ZAR", "KES", "USD"}),
        payment_methods=frozenset({PaymentMethod.CARD, PaymentMethod.MOBILE_MONEY}),
        supports_one_time=True,
        native_idempotency=False,
    )

    @property
    def supports_inline(self) -> bool:
        return bool(self.credentials.get("publicKey"))

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.get('secretKey', '')}",
            "Content-Type": "application/json",
        }

    def _create_session(self, request: SessionRequest) -> ProviderSession:
        payload: Dict[str, Any] = {
            "email": str(request.customer.email),
            "amount": request.amount,
            "currency": request.currency,
            "reference": request.reference,
            "callback_url": with_query_param(request.return_url, "reference", request.reference),
            "metadata": {**request.metadata, "cancel_action": request.cancel_url},
        }
        if request.payment_method is not None:
            payload["channels"] = [request.payment_method.value]
        _, body = self._request("POST", "/transaction/initialize", json=payload)
        data = body.get("data") or {}
        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise ProviderUnavailable(message="Paystack did not return an authorization URL")

        inline_payload = None
        if self.supports_inline:
            inline_payload = {
                "provider": self.name.value,
                "publicKey": self.credentials["publicKey"],
                "reference": data.get("reference") or request.reference,
                "accessCode": data.get("access_code"),
                "email": str(request.customer.email),
                "amount": request.amount,
                "currency": request.currency,
            }
        return ProviderSession(
            reference=data.get("reference") or request.reference,
            redirect_url=authorization_url,
            inline_payload=inline_payload,
            provider_session_id=data.get("access_code"),
        )

    def verify_transaction(self, reference: str) -> ConfirmationResult:
        status_code, body = self._request(
            "GET",
            f"/transaction/verify/{quote(reference, safe='')}",
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
        if provider_status == "success":
            status = ConfirmationStatus.SUCCESS
        elif provider_status in _FAILED_STATUSES:
            status = ConfirmationStatus.FAILED
        else:
            status = ConfirmationStatus.PENDING
        return ConfirmationResult(
            provider=self.name,
            reference=str(data.get("reference") or reference),
            status=status,
            verified_amount=int(data["amount"]) if data.get("amount") is not None else None,
            verified_currency=data.get("currency"),
            transaction_id=str(data["id"]) if data.get("id") is not None else None,
            provider_status=provider_status or None,
        )

    def test_connection(self) -> None:
        # Paystack answers an unknown reference with 400/404 when the key is valid.
        self._request("GET", "/transaction/verify/connection_test", allow_status=(400, 404))

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        secret = self.credentials.get("webhookSecret") or self.credentials.get("secretKey", "")
        if not verify_hmac_sha512_hex(secret, body, headers.get("x-paystack-signature")):
            raise SignatureInvalid(message="Paystack webhook signature mismatch")
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise ValidationError(message="Malformed Paystack webhook payload") from exc
        if not isinstance(payload, dict):
            raise ValidationError(message="Malformed Paystack webhook payload")

        event_type = str(payload.get("event") or "unknown")
        data = payload.get("data") or {}
        transaction_id = str(data["id"]) if data.get("id") is not None else None
        return WebhookNotification(
            provider=self.name,
            event_id=f"{event_type}:{transaction_id or data.get('reference') or 'none'}",
            event_type=event_type,
            reference=data.get("reference"),
            transaction_id=transaction_id,
        )


__all__ = ["PaystackAdapter"]
