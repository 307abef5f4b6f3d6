"""API routes for buyer-facing checkout."""
from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from ..checkout import PaymentState
from ..providers import parse_provider_name
from ..reconciliation import ConfirmationTrigger
from ..schemas.payments import (
    ConfirmRequest,
    ConfirmResponse,
    CreateSessionRequest,
    CreateSessionResponse,
)
from ..services.payments import get_checkout_orchestrator, get_confirmation_reconciler
from .dependencies import _get_optional_current_user

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.post("/create-session", response_model=CreateSessionResponse)
def create_session(
    payload: CreateSessionRequest,
    request: Request,
    *,
    current_user=Depends(_get_optional_current_user),
) -> CreateSessionResponse:
    orchestrator = get_checkout_orchestrator()
    user_id = str(current_user.id) if current_user is not None else None
    outcome = orchestrator.create_checkout_session(
        payload.to_request(),
        user_id=user_id,
        headers=request.headers,
    )
    return CreateSessionResponse.from_outcome(outcome)


@router.post("/confirm", response_model=ConfirmResponse)
def confirm_payment(
    payload: ConfirmRequest,
    response: Response,
) -> Union[ConfirmResponse, JSONResponse]:
    reconciler = get_confirmation_reconciler()
    provider = parse_provider_name(payload.provider)
    outcome = reconciler.confirm(
        provider,
        payload.reference,
        trigger=ConfirmationTrigger.CLIENT_CALLBACK,
        client_transaction_id=payload.transaction_id,
    )
    if outcome.state is PaymentState.REJECTED:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={"error": "Payment could not be verified", "reference": outcome.reference},
        )
    if not outcome.ok:
        response.status_code = status.HTTP_202_ACCEPTED
    return ConfirmResponse.from_outcome(outcome)


__all__ = ["router", "create_session", "confirm_payment"]
