"""Error taxonomy shared by the checkout, vault, and reconciliation layers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

GENERIC_UNAVAILABLE_MESSAGE = "Payment is temporarily unavailable, please try another method."


@dataclass
class PaymentError(Exception):
    """Domain failure carrying both an operator message and a buyer-safe message."""

    message: str
    code: str = "payment_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = GENERIC_UNAVAILABLE_MESSAGE
    retryable: bool = False
    detail: Optional[Mapping[str, Any]] = field(default=None)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def payload(self, *, public: bool = True) -> Dict[str, Any]:
        """Serialized representation suitable for JSON responses."""

        body: Dict[str, Any] = {"error": self.public_message if public else self.message}
        if self.detail:
            body["details"] = dict(self.detail)
        if self.retryable:
            body["retryable"] = True
        return body

    def to_http_exception(self, *, public: bool = True) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=self.payload(public=public))


@dataclass
class ValidationError(PaymentError):
    code: str = "validation_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    public_message: str = ""

    def __post_init__(self) -> None:
        if not self.public_message:
            self.public_message = self.message
        super().__post_init__()


@dataclass
class EligibilityUnavailable(PaymentError):
    """No provider is allowed for the checkout context; callers branch their UX."""

    code: str = "eligibility_unavailable"
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY
    public_message: str = "No payment method is available for your country and currency."


@dataclass
class ProviderUnavailable(PaymentError):
    code: str = "provider_unavailable"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable: bool = True


@dataclass
class InvalidCredentials(PaymentError):
    """Provider rejected the configured keys. Only administrators see the message."""

    code: str = "invalid_credentials"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass
class SignatureInvalid(PaymentError):
    code: str = "signature_invalid"
    status_code: int = status.HTTP_400_BAD_REQUEST
    public_message: str = "Invalid signature"


@dataclass
class DecryptionError(PaymentError):
    code: str = "decryption_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass
class ReferenceNotFound(PaymentError):
    code: str = "reference_not_found"
    status_code: int = status.HTTP_404_NOT_FOUND
    public_message: str = "Unknown payment reference."


@dataclass
class ReconciliationConflict(PaymentError):
    """Reference already reached a terminal state; treated as idempotent success."""

    code: str = "reconciliation_conflict"
    status_code: int = status.HTTP_200_OK
    public_message: str = "Payment already processed."


__all__ = [
    "GENERIC_UNAVAILABLE_MESSAGE",
    "DecryptionError",
    "EligibilityUnavailable",
    "InvalidCredentials",
    "PaymentError",
    "ProviderUnavailable",
    "ReconciliationConflict",
    "ReferenceNotFound",
    "SignatureInvalid",
    "ValidationError",
]
