"""
Product model

The stock item as the shipping and reservation core sees it: quantity on
hand, physical dimensions (cm) and weight (kg).
"""
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship

from parts_store.core.database import Base
from parts_store.core.utils import utcnow


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False, index=True)

    # Pricing
    price = Column(Numeric(10, 2), nullable=False)

    # Inventory
    stock = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Packaging (nullable: catalogue entries are often incomplete)
    height_cm = Column(Float, nullable=True)
    width_cm = Column(Float, nullable=True)
    depth_cm = Column(Float, nullable=True)
    weight_kg = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    cart_items = relationship("CartItem", back_populates="product")

    @property
    def in_stock(self) -> bool:
        return self.stock > 0
