"""Pricing table endpoint."""

from fastapi import APIRouter, Depends

from ..core import PriceResolver, get_price_resolver
from ..models import PricingResponse

router = APIRouter(tags=["pricing"])


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing(resolver: PriceResolver = Depends(get_price_resolver)) -> PricingResponse:
    """The merged per-token price table currently in use."""
    return PricingResponse(loaded=resolver.is_loaded, models=resolver.get_all_pricing())
