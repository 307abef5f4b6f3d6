"""Inbound provider webhooks."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ..errors import SignatureInvalid
from ..providers import parse_provider_name
from ..services.payments import get_confirmation_reconciler

logger = logging.getLogger("payments")

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/{provider}")
async def receive_webhook(provider: str, request: Request) -> JSONResponse:
    """Acknowledge only after the signature is verified and the event is processed."""

    provider_name = parse_provider_name(provider)
    body = await request.body()
    headers = {key.lower(): value for key, value in request.headers.items()}
    reconciler = get_confirmation_reconciler()
    try:
        outcome = await run_in_threadpool(reconciler.handle_webhook, provider_name, body, headers)
    except SignatureInvalid as exc:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=exc.payload())

    content = {"received": True}
    if outcome is not None:
        content["reference"] = outcome.reference
        content["state"] = outcome.state.value
    return JSONResponse(status_code=status.HTTP_200_OK, content=content)


__all__ = ["router", "receive_webhook"]
