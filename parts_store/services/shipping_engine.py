"""
Shipping Cost Engine v1.0.0

Quotes shipping for a validated cart:
1. Resolve carrier profiles (CarrierPricingTable)
2. Plan parcels for every carrier/format (PackagingPlanner), skip infeasible ones
3. Price each parcel from the format's step table, sum per plan
4. Cheapest plan wins; ties go to the carrier declared first
5. Apply markup, then the free-shipping override

Stock is not re-validated here; callers pass lines that are already
active, in stock and within quantity.

Usage:
    engine = ShippingCostEngine(carrier_pricing_table, ShippingSettingsService(db))
    quote = await engine.quote(lines, subtotal)
"""
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from parts_store.core.exceptions import (
    NoCarrierAvailableError,
    PackingInfeasibleError,
    ShippingError,
)
from parts_store.core.utils import round_money
from parts_store.modules.shipping import (
    CarrierFormat,
    CarrierProfile,
    PackagingPlanner,
    PackingItem,
    Parcel,
    ParcelItem,
    ParcelPlan,
)
from parts_store.services.carrier_pricing import CarrierPricingTable
from parts_store.services.shipping_settings import ShippingSettingsService, ShippingTerms

logger = logging.getLogger(__name__)

FIXED_CARRIER_ID = "FIXED"
FIXED_FORMAT_NAME = "fixed"


@dataclass(frozen=True)
class ShippingLine:
    """A cart line with the product measures needed for packing."""
    item_id: Any
    quantity: int
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    width_cm: Optional[float] = None
    depth_cm: Optional[float] = None
    name: Optional[str] = None

    @classmethod
    def from_product(cls, product, quantity: int) -> "ShippingLine":
        return cls(
            item_id=product.id,
            quantity=quantity,
            weight_kg=product.weight_kg,
            height_cm=product.height_cm,
            width_cm=product.width_cm,
            depth_cm=product.depth_cm,
            name=product.name,
        )

    @property
    def has_packaging_data(self) -> bool:
        values = (self.weight_kg, self.height_cm, self.width_cm, self.depth_cm)
        return all(v is not None and v > 0 for v in values)

    def to_packing_item(self) -> PackingItem:
        return PackingItem(
            item_id=self.item_id,
            weight_kg=self.weight_kg or 0.0,
            height_cm=self.height_cm or 0.0,
            width_cm=self.width_cm or 0.0,
            depth_cm=self.depth_cm or 0.0,
            quantity=self.quantity,
            name=self.name,
        )


@dataclass(frozen=True)
class PricedPlan:
    """A feasible candidate: carrier, format and plan with per-parcel costs."""
    carrier: CarrierProfile
    fmt: CarrierFormat
    plan: ParcelPlan
    base_cost: Decimal


@dataclass(frozen=True)
class ShippingQuote:
    carrier_id: str
    carrier_name: str
    format_name: str
    base_cost: Decimal
    final_cost: Decimal
    markup_percent: Decimal
    parcels: Tuple[Parcel, ...]
    is_free_shipping: bool
    free_shipping_threshold: Optional[Decimal]

    @property
    def parcel_count(self) -> int:
        return len(self.parcels)

    @property
    def total_weight_kg(self) -> float:
        return sum(parcel.weight_kg for parcel in self.parcels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier_id": self.carrier_id,
            "carrier_name": self.carrier_name,
            "format_name": self.format_name,
            "base_cost": str(self.base_cost),
            "final_cost": str(self.final_cost),
            "markup_percent": str(self.markup_percent),
            "parcels": [parcel.to_dict() for parcel in self.parcels],
            "is_free_shipping": self.is_free_shipping,
            "free_shipping_threshold": (
                str(self.free_shipping_threshold) if self.free_shipping_threshold is not None else None
            ),
        }


def apply_markup(base_cost: Decimal, markup_percent: Decimal) -> Decimal:
    return round_money(base_cost * (Decimal("1") + Decimal(str(markup_percent)) / Decimal("100")))


def price_plan(carrier: CarrierProfile, fmt: CarrierFormat, plan: ParcelPlan) -> Optional[PricedPlan]:
    """Attach step prices to every parcel. None if a parcel is heavier than the step table."""
    priced: List[Parcel] = []
    total = Decimal("0")
    for parcel in plan.parcels:
        price = fmt.price_for_weight(parcel.weight_kg)
        if price is None:
            return None
        priced.append(replace(parcel, cost=round_money(price)))
        total += price

    return PricedPlan(
        carrier=carrier,
        fmt=fmt,
        plan=replace(plan, parcels=tuple(priced)),
        base_cost=round_money(total),
    )


def _offending_item(failures: List[PackingInfeasibleError]) -> Any:
    """The item every candidate rejected, else the first one reported."""
    reported = [e.item_id for e in failures if e.item_id is not None]
    for item_id in reported:
        if reported.count(item_id) == len(failures):
            return item_id
    return reported[0] if reported else None


def select_cheapest(
    items: Sequence[PackingItem],
    profiles: Sequence[CarrierProfile],
    planner: PackagingPlanner,
) -> PricedPlan:
    """
    Evaluate every carrier/format and return the cheapest feasible plan.

    Raises:
        NoCarrierAvailableError: no carrier/format can ship the items
    """
    best: Optional[PricedPlan] = None
    failures: List[PackingInfeasibleError] = []

    for carrier in profiles:
        for fmt in carrier.formats:
            try:
                plan = planner.plan(items, carrier, fmt)
            except PackingInfeasibleError as e:
                logger.debug(e.message)
                failures.append(e)
                continue

            candidate = price_plan(carrier, fmt, plan)
            if candidate is None:
                logger.debug(f"{carrier.carrier_id}/{fmt.name}: parcel weight beyond price table")
                continue

            # Strict comparison keeps the earlier declaration on ties
            if best is None or candidate.base_cost < best.base_cost:
                best = candidate

    if best is None:
        item_id = _offending_item(failures)
        message = "No carrier can ship this cart"
        if item_id is not None:
            message = f"No carrier can ship item {item_id}"
        raise NoCarrierAvailableError(message, item_id=item_id)

    return best


class ShippingCostEngine:
    """
    Multi-carrier, multi-parcel shipping quotes.

    Packing and pricing are pure; only resolving profiles and terms
    touches storage.
    """

    def __init__(
        self,
        pricing_table: CarrierPricingTable,
        settings_service: ShippingSettingsService,
        planner: Optional[PackagingPlanner] = None,
    ):
        self.pricing_table = pricing_table
        self.settings_service = settings_service
        self.planner = planner or PackagingPlanner()

    async def quote(self, lines: Sequence[ShippingLine], subtotal: Decimal) -> ShippingQuote:
        """
        Quote shipping for `lines`.

        Raises:
            NoCarrierAvailableError: no carrier/format can ship the cart
            ShippingError: the cart is empty
        """
        lines = [line for line in lines if line.quantity > 0]
        if not lines:
            raise ShippingError("Cannot quote shipping for an empty cart", code="EMPTY_CART")

        subtotal = round_money(subtotal)
        terms = await self.settings_service.get_terms()

        if terms.fixed_price_enabled and not all(line.has_packaging_data for line in lines):
            logger.info("Cart has items without packaging data, using fixed shipping price")
            return self._fixed_quote(lines, subtotal, terms)

        profiles = await self.pricing_table.profiles()
        items = [line.to_packing_item() for line in lines]
        best = select_cheapest(items, profiles, self.planner)

        final_cost = apply_markup(best.base_cost, terms.markup_percent)
        is_free = terms.qualifies_for_free_shipping(subtotal)

        logger.debug(
            f"Shipping quote: {best.carrier.carrier_id}/{best.fmt.name}, "
            f"{best.plan.parcel_count} parcels, base {best.base_cost}, final {final_cost}"
            f"{' (free)' if is_free else ''}"
        )

        return ShippingQuote(
            carrier_id=best.carrier.carrier_id,
            carrier_name=best.carrier.name,
            format_name=best.fmt.name,
            base_cost=best.base_cost,
            final_cost=Decimal("0.00") if is_free else final_cost,
            markup_percent=terms.markup_percent,
            parcels=best.plan.parcels,
            is_free_shipping=is_free,
            free_shipping_threshold=terms.free_shipping_threshold if terms.free_shipping_enabled else None,
        )

    def _fixed_quote(self, lines: Sequence[ShippingLine], subtotal: Decimal, terms: ShippingTerms) -> ShippingQuote:
        """One parcel at the flat price, no markup."""
        items = [line.to_packing_item() for line in lines]
        price = round_money(terms.fixed_shipping_price)
        parcel = Parcel(
            number=1,
            weight_kg=sum(item.weight_kg * item.quantity for item in items),
            height_cm=max(item.height_cm for item in items),
            width_cm=max(item.width_cm for item in items),
            depth_cm=max(item.depth_cm for item in items),
            items=tuple(ParcelItem(item_id=item.item_id, quantity=item.quantity, name=item.name) for item in items),
            cost=price,
        )
        is_free = terms.qualifies_for_free_shipping(subtotal)

        return ShippingQuote(
            carrier_id=FIXED_CARRIER_ID,
            carrier_name="Fixed rate",
            format_name=FIXED_FORMAT_NAME,
            base_cost=price,
            final_cost=Decimal("0.00") if is_free else price,
            markup_percent=Decimal("0"),
            parcels=(parcel,),
            is_free_shipping=is_free,
            free_shipping_threshold=terms.free_shipping_threshold if terms.free_shipping_enabled else None,
        )
