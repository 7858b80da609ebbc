"""
Packaging Planner v1.0.0

Splits a cart into parcels for one carrier format.

Greedy first-fit, heaviest unit first:
- Quantities are expanded into single units
- Units are sorted by weight descending; equal weights keep input order
- Each unit goes into the first open parcel that still fits it, else a new parcel
- A unit that cannot fit even on its own makes the format infeasible

A parcel's size is the per-axis maximum of the units it holds (units are
laid side by side inside the largest footprint), so only weight accumulates.

Pure code: no I/O, same input always yields the same plan.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from parts_store.core.exceptions import PackingInfeasibleError
from parts_store.modules.shipping.profiles import (
    CarrierFormat,
    CarrierProfile,
    WEIGHT_TOLERANCE_KG,
)


@dataclass(frozen=True)
class PackingItem:
    """One cart line as the planner sees it. Missing measures count as 0."""
    item_id: Any
    weight_kg: float = 0.0
    height_cm: float = 0.0
    width_cm: float = 0.0
    depth_cm: float = 0.0
    quantity: int = 1
    name: Optional[str] = None

    @property
    def longest_side_cm(self) -> float:
        return max(self.height_cm, self.width_cm, self.depth_cm)

    @property
    def sum_of_sides_cm(self) -> float:
        return self.height_cm + self.width_cm + self.depth_cm


@dataclass(frozen=True)
class ParcelItem:
    item_id: Any
    quantity: int
    name: Optional[str] = None


@dataclass(frozen=True)
class Parcel:
    """One physical package. `cost` is filled in once the plan is priced."""
    number: int
    weight_kg: float
    height_cm: float
    width_cm: float
    depth_cm: float
    items: Tuple[ParcelItem, ...]
    cost: Optional[Decimal] = None

    @property
    def longest_side_cm(self) -> float:
        return max(self.height_cm, self.width_cm, self.depth_cm)

    @property
    def sum_of_sides_cm(self) -> float:
        return self.height_cm + self.width_cm + self.depth_cm

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "weight_kg": round(self.weight_kg, 3),
            "dimensions_cm": {
                "height": self.height_cm,
                "width": self.width_cm,
                "depth": self.depth_cm,
            },
            "items": [
                {"item_id": item.item_id, "name": item.name, "quantity": item.quantity}
                for item in self.items
            ],
            "cost": str(self.cost) if self.cost is not None else None,
        }


@dataclass(frozen=True)
class ParcelPlan:
    carrier_id: str
    format_name: str
    parcels: Tuple[Parcel, ...]

    @property
    def parcel_count(self) -> int:
        return len(self.parcels)

    @property
    def total_weight_kg(self) -> float:
        return sum(parcel.weight_kg for parcel in self.parcels)


@dataclass
class _OpenParcel:
    weight_kg: float = 0.0
    height_cm: float = 0.0
    width_cm: float = 0.0
    depth_cm: float = 0.0
    # item_id -> [quantity, name], insertion ordered
    items: Dict[Any, List[Any]] = field(default_factory=dict)

    def fits(self, unit: PackingItem, fmt: CarrierFormat) -> bool:
        height = max(self.height_cm, unit.height_cm)
        width = max(self.width_cm, unit.width_cm)
        depth = max(self.depth_cm, unit.depth_cm)
        return fmt.accepts(
            self.weight_kg + unit.weight_kg,
            max(height, width, depth),
            height + width + depth,
        )

    def add(self, unit: PackingItem) -> None:
        self.weight_kg += unit.weight_kg
        self.height_cm = max(self.height_cm, unit.height_cm)
        self.width_cm = max(self.width_cm, unit.width_cm)
        self.depth_cm = max(self.depth_cm, unit.depth_cm)
        entry = self.items.setdefault(unit.item_id, [0, unit.name])
        entry[0] += 1

    def freeze(self, number: int) -> Parcel:
        return Parcel(
            number=number,
            weight_kg=self.weight_kg,
            height_cm=self.height_cm,
            width_cm=self.width_cm,
            depth_cm=self.depth_cm,
            items=tuple(
                ParcelItem(item_id=item_id, quantity=quantity, name=name)
                for item_id, (quantity, name) in self.items.items()
            ),
        )


class PackagingPlanner:
    """First-fit-descending packer for a single carrier format."""

    def expand_units(self, items: Sequence[PackingItem]) -> List[PackingItem]:
        units = [item for item in items for _ in range(max(item.quantity, 0))]
        # sorted() is stable, also with reverse=True
        return sorted(units, key=lambda unit: unit.weight_kg, reverse=True)

    def check_unit(self, item: PackingItem, carrier: CarrierProfile, fmt: CarrierFormat) -> None:
        """Raise PackingInfeasibleError if a single unit of `item` exceeds the format."""
        if fmt.accepts(item.weight_kg, item.longest_side_cm, item.sum_of_sides_cm):
            return

        if item.weight_kg > fmt.max_weight_kg + WEIGHT_TOLERANCE_KG:
            reason = f"weighs {item.weight_kg}kg, limit {fmt.max_weight_kg}kg"
        elif item.longest_side_cm > fmt.max_side_cm:
            reason = f"side {item.longest_side_cm}cm, limit {fmt.max_side_cm}cm"
        else:
            reason = f"sum of sides {item.sum_of_sides_cm}cm, limit {fmt.max_sum_of_sides_cm}cm"

        raise PackingInfeasibleError(
            f"Item {item.item_id} cannot ship with {carrier.carrier_id}/{fmt.name}: {reason}",
            item_id=item.item_id,
            carrier_id=carrier.carrier_id,
            format_name=fmt.name,
        )

    def plan(self, items: Sequence[PackingItem], carrier: CarrierProfile, fmt: CarrierFormat) -> ParcelPlan:
        """
        Pack `items` into parcels accepted by `fmt`.

        Raises:
            PackingInfeasibleError: a single unit exceeds the format ceilings
                (the first such item in input order is reported)
        """
        for item in items:
            if item.quantity > 0:
                self.check_unit(item, carrier, fmt)

        open_parcels: List[_OpenParcel] = []
        for unit in self.expand_units(items):
            for parcel in open_parcels:
                if parcel.fits(unit, fmt):
                    parcel.add(unit)
                    break
            else:
                parcel = _OpenParcel()
                parcel.add(unit)
                open_parcels.append(parcel)

        return ParcelPlan(
            carrier_id=carrier.carrier_id,
            format_name=fmt.name,
            parcels=tuple(parcel.freeze(number) for number, parcel in enumerate(open_parcels, start=1)),
        )
