"""
Cart routes

Last-unit products are admitted through ReservationManager.try_reserve:
another holder's unexpired lease -> 409 item_temporarily_unavailable,
not enough stock -> 400 insufficient_stock.

Listing the cart re-validates it: lapsed leases drop their lines,
live leases are refreshed.
"""
import logging
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from parts_store.api.deps import get_holder_id
from parts_store.core.database import get_db
from parts_store.core.exceptions import ProductNotFoundError, ReservationBusyError, StockError
from parts_store.core.utils import as_utc, round_money, utcnow
from parts_store.jobs.reservation_reclaim import ReclaimScheduler, get_reclaim_scheduler
from parts_store.models import CartItem, Product
from parts_store.schemas.cart import (
    CartCleanupResponse,
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartResponse,
    RemovedCartItem,
)
from parts_store.services.reservations import ReservationManager

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_cart_item(db: AsyncSession, item_id: int, holder_id: str) -> CartItem:
    result = await db.execute(
        select(CartItem).where(CartItem.id == item_id, CartItem.user_id == holder_id)
    )
    item = result.scalar_one_or_none()
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Cart item not found"
        )
    return item


@router.get("", response_model=CartResponse)
async def get_cart(
    holder_id: str = Depends(get_holder_id),
    db: AsyncSession = Depends(get_db)
):
    """Get the holder's cart, dropping lapsed and unavailable lines and refreshing live leases"""
    result = await db.execute(
        select(CartItem)
        .where(CartItem.user_id == holder_id)
        .options(selectinload(CartItem.product))
        .order_by(CartItem.id)
    )
    items = result.scalars().all()

    manager = ReservationManager(db)
    now = utcnow()
    kept: List[CartItem] = []
    removed: List[RemovedCartItem] = []

    for item in items:
        product = item.product
        name = product.name if product else None

        if product is None or not product.is_active or not product.in_stock:
            reason = "unavailable"
        elif item.reservation_expires_at is not None and as_utc(item.reservation_expires_at) < now:
            reason = "reservation_expired"
        else:
            reason = None

        if reason is None and (item.reservation_expires_at is not None or product.stock == 1):
            try:
                reservation = await manager.try_reserve(product.id, holder_id)
                item.reservation_expires_at = reservation.expires_at if reservation else None
            except ReservationBusyError:
                reason = "reserved_by_other"

        if reason is not None:
            await manager.release(item.product_id, holder_id)
            await db.delete(item)
            removed.append(RemovedCartItem(product_id=item.product_id, name=name, reason=reason))
            continue

        if item.quantity > product.stock:
            item.quantity = product.stock
        kept.append(item)

    await db.commit()

    if removed:
        logger.info(f"Cart re-validation for {holder_id} removed {len(removed)} lines")

    subtotal = sum(
        (round_money(item.unit_price if item.unit_price is not None else item.product.price) * item.quantity
         for item in kept),
        Decimal("0.00"),
    )

    return CartResponse(
        items=[CartItemResponse.model_validate(item) for item in kept],
        subtotal=float(subtotal),
        item_count=sum(item.quantity for item in kept),
        removed_items=removed,
    )


@router.post("/items", status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    item_data: CartItemCreate,
    holder_id: str = Depends(get_holder_id),
    db: AsyncSession = Depends(get_db)
):
    """Add a product to the cart; the last unit is leased to this holder"""
    result = await db.execute(
        select(Product)
        .where(Product.id == item_data.product_id)
        .with_for_update()
    )
    product = result.scalar_one_or_none()

    if not product or not product.is_active:
        raise ProductNotFoundError(item_id=item_data.product_id)

    result = await db.execute(
        select(CartItem).where(
            CartItem.user_id == holder_id,
            CartItem.product_id == item_data.product_id
        )
    )
    existing = result.scalar_one_or_none()

    total_requested = item_data.quantity + (existing.quantity if existing else 0)

    if total_requested > product.stock:
        raise StockError(
            f"Only {product.stock} items in stock",
            item_id=product.id,
            requested_qty=total_requested,
            available_qty=product.stock,
        )

    reservation = None
    if product.stock == 1:
        # Raises ReservationBusyError -> 409
        reservation = await ReservationManager(db).try_reserve(product.id, holder_id)

    expires_at = reservation.expires_at if reservation else None

    if existing:
        existing.quantity = total_requested
        existing.reservation_expires_at = expires_at
    else:
        db.add(CartItem(
            user_id=holder_id,
            product_id=product.id,
            quantity=item_data.quantity,
            unit_price=round_money(product.price),
            reservation_expires_at=expires_at,
        ))

    await db.commit()

    return {
        "message": "Item added to cart",
        "reservation_expires_at": expires_at.isoformat() if expires_at else None,
    }


@router.put("/items/{item_id}")
async def update_cart_item(
    item_id: int,
    update_data: CartItemUpdate,
    holder_id: str = Depends(get_holder_id),
    db: AsyncSession = Depends(get_db)
):
    """Update cart item quantity; zero or less removes the line"""
    item = await _get_cart_item(db, item_id, holder_id)
    manager = ReservationManager(db)

    if update_data.quantity <= 0:
        await manager.release(item.product_id, holder_id)
        await db.delete(item)
        await db.commit()
        return {"message": "Item removed from cart"}

    product_result = await db.execute(
        select(Product)
        .where(Product.id == item.product_id)
        .with_for_update()
    )
    product = product_result.scalar_one()

    if update_data.quantity > product.stock:
        raise StockError(
            f"Only {product.stock} items in stock",
            item_id=product.id,
            requested_qty=update_data.quantity,
            available_qty=product.stock,
        )

    if product.stock == 1:
        reservation = await manager.try_reserve(product.id, holder_id)
        item.reservation_expires_at = reservation.expires_at if reservation else None

    item.quantity = update_data.quantity
    await db.commit()

    return {"message": "Cart updated"}


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_cart(
    item_id: int,
    holder_id: str = Depends(get_holder_id),
    db: AsyncSession = Depends(get_db)
):
    """Remove item from cart and release its lease"""
    item = await _get_cart_item(db, item_id, holder_id)

    await ReservationManager(db).release(item.product_id, holder_id)
    await db.delete(item)
    await db.commit()


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(
    holder_id: str = Depends(get_holder_id),
    db: AsyncSession = Depends(get_db)
):
    """Clear entire cart and release every lease of the holder"""
    await ReservationManager(db).release_holder(holder_id)
    await db.execute(
        delete(CartItem).where(CartItem.user_id == holder_id)
    )
    await db.commit()


@router.api_route("/cleanup", methods=["GET", "POST"], response_model=CartCleanupResponse)
async def cleanup_expired_reservations(
    scheduler: ReclaimScheduler = Depends(get_reclaim_scheduler),
):
    """Sweep expired reservations now. Idempotent."""
    result = await scheduler.run_once()
    return CartCleanupResponse(removed=result.released_count, items=result.released_items)
