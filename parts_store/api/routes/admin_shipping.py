"""
Admin Shipping API Routes

Manage the carrier pricing document and the shop-wide shipping terms.
Every endpoint requires the X-Admin-Token header.
"""
import logging
from decimal import Decimal
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from parts_store.api.deps import get_carrier_pricing_table, require_admin
from parts_store.core.database import get_db
from parts_store.core.exceptions import ConfigUnavailableError
from parts_store.core.utils import round_money
from parts_store.schemas.shipping import (
    CarrierConfigResponse,
    ShippingSettingsResponse,
    ShippingSettingsUpdate,
)
from parts_store.services.carrier_pricing import CarrierPricingTable
from parts_store.services.shipping_settings import ShippingSettingsService, ShippingTerms

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/shipping",
    tags=["admin-shipping"],
    dependencies=[Depends(require_admin)],
)


def terms_to_response(terms: ShippingTerms, source: str) -> ShippingSettingsResponse:
    return ShippingSettingsResponse(
        markup_percent=float(terms.markup_percent),
        free_shipping_threshold=(
            float(terms.free_shipping_threshold) if terms.free_shipping_threshold is not None else None
        ),
        fixed_shipping_price=(
            float(terms.fixed_shipping_price) if terms.fixed_shipping_price is not None else None
        ),
        source=source,
    )


# ==================== Carrier Pricing ====================


@router.get("/carriers", response_model=CarrierConfigResponse)
async def get_carrier_config(
    pricing_table: CarrierPricingTable = Depends(get_carrier_pricing_table),
):
    """Active carrier pricing document, or the bundled default."""
    return CarrierConfigResponse(**await pricing_table.describe())


@router.post("/carriers", response_model=CarrierConfigResponse, status_code=status.HTTP_201_CREATED)
async def update_carrier_config(
    document: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    pricing_table: CarrierPricingTable = Depends(get_carrier_pricing_table),
):
    """
    Replace the carrier pricing document.

    The document is validated before anything is written; an invalid one
    is a 400 and the active document stays in place.
    """
    try:
        snapshot = await pricing_table.store(document, db)
    except ConfigUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_carrier_config", "message": e.message},
        )

    logger.info(f"Admin replaced carrier pricing: version {snapshot.version}")
    return CarrierConfigResponse(**await pricing_table.describe())


# ==================== Shipping Terms ====================


@router.get("/settings", response_model=ShippingSettingsResponse)
async def get_shipping_settings(db: AsyncSession = Depends(get_db)):
    """Markup, free-shipping threshold and fixed price currently in effect."""
    service = ShippingSettingsService(db)
    terms = await service.get_terms()
    return terms_to_response(terms, service.source)


@router.post("/settings", response_model=ShippingSettingsResponse)
async def update_shipping_settings(
    request: ShippingSettingsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Store new shipping terms. A threshold or fixed price of 0 disables it."""
    terms = ShippingTerms(
        markup_percent=Decimal(str(request.markup_percent)),
        free_shipping_threshold=(
            round_money(request.free_shipping_threshold) if request.free_shipping_threshold is not None else None
        ),
        fixed_shipping_price=(
            round_money(request.fixed_shipping_price) if request.fixed_shipping_price is not None else None
        ),
    )
    await ShippingSettingsService(db).save_terms(terms)
    await db.commit()
    return terms_to_response(terms, "database")
