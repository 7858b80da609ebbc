"""
Shipping API Routes

Provides endpoints for:
- Shipping estimate for a list of products (cheapest carrier, parcels)
- Free-shipping threshold lookup
"""
import logging
from decimal import Decimal
from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parts_store.api.deps import get_carrier_pricing_table
from parts_store.core.database import get_db
from parts_store.core.exceptions import ProductNotFoundError, StockError
from parts_store.core.utils import round_money
from parts_store.models import Product
from parts_store.schemas.shipping import (
    FreeThresholdResponse,
    ParcelItemResponse,
    ParcelResponse,
    ShippingCalculateRequest,
    ShippingQuoteResponse,
)
from parts_store.services.carrier_pricing import CarrierPricingTable
from parts_store.services.shipping_engine import (
    FIXED_CARRIER_ID,
    ShippingCostEngine,
    ShippingLine,
    ShippingQuote,
)
from parts_store.services.shipping_settings import ShippingSettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])


# ==================== Helper Functions ====================


def quote_message(quote: ShippingQuote) -> str:
    if quote.is_free_shipping:
        return "Free shipping!"
    if quote.carrier_id == FIXED_CARRIER_ID:
        return "Flat-rate shipping"
    if quote.parcel_count > 1:
        return f"{quote.parcel_count} parcels - shipped with {quote.carrier_name}"
    return f"Shipped with {quote.carrier_name}"


def quote_to_response(quote: ShippingQuote, subtotal: Decimal) -> ShippingQuoteResponse:
    return ShippingQuoteResponse(
        carrier_id=quote.carrier_id,
        carrier_name=quote.carrier_name,
        format_name=quote.format_name,
        base_cost=float(quote.base_cost),
        final_cost=float(quote.final_cost),
        markup_percent=float(quote.markup_percent),
        total_parcels=quote.parcel_count,
        parcels=[
            ParcelResponse(
                number=parcel.number,
                weight_kg=round(parcel.weight_kg, 3),
                height_cm=parcel.height_cm,
                width_cm=parcel.width_cm,
                depth_cm=parcel.depth_cm,
                cost=float(parcel.cost) if parcel.cost is not None else None,
                items=[
                    ParcelItemResponse(item_id=item.item_id, name=item.name, quantity=item.quantity)
                    for item in parcel.items
                ],
            )
            for parcel in quote.parcels
        ],
        is_free_shipping=quote.is_free_shipping,
        free_shipping_threshold=(
            float(quote.free_shipping_threshold) if quote.free_shipping_threshold is not None else None
        ),
        subtotal=float(subtotal),
        message=quote_message(quote),
    )


# ==================== Endpoints ====================


@router.post("/calculate", response_model=ShippingQuoteResponse)
async def calculate_shipping(
    request: ShippingCalculateRequest,
    db: AsyncSession = Depends(get_db),
    pricing_table: CarrierPricingTable = Depends(get_carrier_pricing_table),
):
    """
    Estimate shipping for a list of products.

    Products must exist, be active and have enough stock. Returns 422
    no_carrier_available when no carrier can ship the items.
    """
    quantities: Dict[int, int] = {}
    for item in request.items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    result = await db.execute(select(Product).where(Product.id.in_(list(quantities))))
    products = {product.id: product for product in result.scalars().all()}

    lines = []
    computed_subtotal = Decimal("0.00")
    for product_id, quantity in quantities.items():
        product = products.get(product_id)
        if not product or not product.is_active:
            raise ProductNotFoundError(item_id=product_id)
        if quantity > product.stock:
            raise StockError(
                f"Only {product.stock} of {product.name} in stock",
                item_id=product_id,
                requested_qty=quantity,
                available_qty=product.stock,
            )
        lines.append(ShippingLine.from_product(product, quantity))
        computed_subtotal += round_money(product.price) * quantity

    subtotal = round_money(request.subtotal if request.subtotal is not None else computed_subtotal)

    engine = ShippingCostEngine(pricing_table, ShippingSettingsService(db))
    quote = await engine.quote(lines, subtotal)

    logger.info(
        f"Shipping estimate: {quote.carrier_id}/{quote.format_name}, "
        f"{quote.parcel_count} parcels, {quote.final_cost}"
    )
    return quote_to_response(quote, subtotal)


@router.get("/free-threshold", response_model=FreeThresholdResponse)
async def get_free_shipping_threshold(db: AsyncSession = Depends(get_db)):
    """Current free-shipping threshold, if enabled."""
    threshold = await ShippingSettingsService(db).get_free_shipping_threshold()
    return FreeThresholdResponse(
        enabled=threshold is not None,
        threshold=float(threshold) if threshold is not None else None,
    )
