"""
Shipping core: carrier profiles, step pricing and parcel planning.

Pure code. Loading the pricing document and picking a carrier live in
parts_store.services.
"""
from parts_store.modules.shipping.profiles import (
    PriceStep,
    CarrierFormat,
    CarrierProfile,
    PricingSnapshot,
    lookup_step_price,
    parse_pricing_document,
)
from parts_store.modules.shipping.packaging import (
    PackingItem,
    Parcel,
    ParcelItem,
    ParcelPlan,
    PackagingPlanner,
)

__all__ = [
    "PriceStep",
    "CarrierFormat",
    "CarrierProfile",
    "PricingSnapshot",
    "lookup_step_price",
    "parse_pricing_document",
    "PackingItem",
    "Parcel",
    "ParcelItem",
    "ParcelPlan",
    "PackagingPlanner",
]
