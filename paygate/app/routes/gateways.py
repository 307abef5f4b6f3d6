"""Read-only view of provider eligibility for diagnostics."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request

from ..eligibility import (
    EligibilityContext,
    currency_for_country,
    detect_country_from_headers,
    normalize_country,
)
from ..entitlements.models import BillingInterval
from ..errors import ValidationError
from ..schemas.payments import GatewayCapabilitiesResponse
from ..services.payments import get_checkout_config, get_eligibility_resolver

router = APIRouter(prefix="/api/gateways", tags=["gateways"])


@router.get("/capabilities", response_model=GatewayCapabilitiesResponse)
def get_capabilities(
    request: Request,
    country: Optional[str] = Query(default=None),
    currency: Optional[str] = Query(default=None),
    interval: BillingInterval = Query(default=BillingInterval.MONTHLY),
) -> GatewayCapabilitiesResponse:
    country_code = normalize_country(country) or detect_country_from_headers(
        request.headers, default=get_checkout_config().default_country
    )
    currency_code = (currency or "").strip().upper() or currency_for_country(country_code)
    if len(currency_code) != 3 or not currency_code.isalpha():
        raise ValidationError(message=f"Invalid currency: {currency}")
    context = EligibilityContext(
        country_code=country_code,
        currency_code=currency_code,
        billing_interval=interval,
    )
    result = get_eligibility_resolver().resolve(context)
    return GatewayCapabilitiesResponse.from_result(result)


__all__ = ["router", "get_capabilities"]
