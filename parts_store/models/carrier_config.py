"""
Carrier configuration models

CarrierConfig stores the carrier pricing document (JSON text); the newest
active row wins. ShippingSettings stores the shop-wide markup, free-shipping
threshold and fixed fallback price.
"""
from sqlalchemy import Column, Integer, Boolean, DateTime, Numeric, Text

from parts_store.core.database import Base
from parts_store.core.utils import utcnow


class CarrierConfig(Base):
    __tablename__ = "carrier_configs"

    id = Column(Integer, primary_key=True, index=True)
    config = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, index=True)


class ShippingSettings(Base):
    __tablename__ = "shipping_settings"

    id = Column(Integer, primary_key=True, index=True)
    markup_percent = Column(Numeric(5, 2), default=0, nullable=False)
    free_shipping_threshold = Column(Numeric(10, 2), nullable=True)  # None = disabled
    fixed_shipping_price = Column(Numeric(10, 2), nullable=True)  # used when dimensions are missing
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, index=True)
