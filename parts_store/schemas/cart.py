"""
Cart schemas
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int


class CartProductSummary(BaseModel):
    id: int
    sku: str
    name: str
    price: float
    stock: int

    class Config:
        from_attributes = True


class CartItemResponse(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: Optional[float] = None
    reservation_expires_at: Optional[datetime] = None
    product: Optional[CartProductSummary] = None

    class Config:
        from_attributes = True


class RemovedCartItem(BaseModel):
    """A line dropped during cart re-validation."""
    product_id: int
    name: Optional[str] = None
    reason: str  # reservation_expired, unavailable, reserved_by_other


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    subtotal: float
    item_count: int
    removed_items: List[RemovedCartItem] = []


class CartCleanupResponse(BaseModel):
    removed: int
    items: List[Dict[str, Any]] = []
