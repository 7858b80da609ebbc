"""
API dependencies

Cart ownership is an opaque holder id sent by the upstream request layer
in the X-User-Id header. Authentication happens before this service.
Admin endpoints take a shared token in the X-Admin-Token header.
"""
import secrets
from typing import Optional
from fastapi import Header, HTTPException, status

from parts_store.core.config import settings
from parts_store.services.carrier_pricing import CarrierPricingTable, carrier_pricing_table

MAX_HOLDER_ID_LENGTH = 64


async def get_holder_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Holder id for cart and reservation operations."""
    holder_id = (x_user_id or "").strip()
    if not holder_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    if len(holder_id) > MAX_HOLDER_ID_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"X-User-Id must be at most {MAX_HOLDER_ID_LENGTH} characters",
        )
    return holder_id


def get_carrier_pricing_table() -> CarrierPricingTable:
    """The process-wide pricing table."""
    return carrier_pricing_table


async def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    """Gate for the admin endpoints. Disabled while ADMIN_API_TOKEN is unset."""
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API disabled",
        )
    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
