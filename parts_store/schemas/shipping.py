"""
Shipping Schemas

Pydantic models for shipping estimate requests and responses.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ==================== Request Schemas ====================


class ShippingItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1, le=1000)


class ShippingCalculateRequest(BaseModel):
    """Estimate shipping for a list of products."""
    items: List[ShippingItemRequest] = Field(..., min_length=1)
    subtotal: Optional[Decimal] = Field(None, ge=0, description="Computed from product prices when omitted")


# ==================== Response Schemas ====================


class ParcelItemResponse(BaseModel):
    item_id: int
    name: Optional[str] = None
    quantity: int


class ParcelResponse(BaseModel):
    number: int
    weight_kg: float
    height_cm: float
    width_cm: float
    depth_cm: float
    cost: Optional[float] = None
    items: List[ParcelItemResponse]


class ShippingQuoteResponse(BaseModel):
    carrier_id: str
    carrier_name: str
    format_name: str
    base_cost: float
    final_cost: float
    markup_percent: float
    total_parcels: int
    parcels: List[ParcelResponse]
    is_free_shipping: bool
    free_shipping_threshold: Optional[float] = None
    subtotal: float
    message: str


class FreeThresholdResponse(BaseModel):
    enabled: bool
    threshold: Optional[float] = None


# ==================== Admin Schemas ====================


class ShippingSettingsUpdate(BaseModel):
    markup_percent: Decimal = Field(..., ge=0, le=100)
    free_shipping_threshold: Optional[Decimal] = Field(None, ge=0, description="None or 0 disables free shipping")
    fixed_shipping_price: Optional[Decimal] = Field(None, ge=0, description="Flat price when dimensions are missing")


class ShippingSettingsResponse(BaseModel):
    markup_percent: float
    free_shipping_threshold: Optional[float] = None
    fixed_shipping_price: Optional[float] = None
    source: str  # "database" or "config"


class CarrierConfigResponse(BaseModel):
    version: str
    is_default: bool
    loaded_at: str
    carriers: List[str]
    config: Dict[str, Any]
