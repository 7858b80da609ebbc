"""
Stock Reservation model

A short lease on the last unit of a product, held by one cart owner.
The unique constraint on product_id is what makes admission atomic:
at most one lease row can exist per product, and the reservation manager
writes it with a conditional upsert.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from parts_store.core.database import Base
from parts_store.core.utils import utcnow


class StockReservation(Base):
    """
    Temporary lease on a singleton-stock product.

    Lifecycle:
    1. Created when the last unit is added to a cart
    2. Refreshed when the same holder re-adds or re-validates the cart
    3. Deleted on release (line removed, order placed) or by the reclaim sweep
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        UniqueConstraint("product_id", name="uq_stock_reservations_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    holder_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Relationships
    product = relationship("Product")
